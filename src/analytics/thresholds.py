"""
src/analytics/thresholds.py
────────────────────────────
Threshold classifier for PLC parameters.

Provides:
  - classify()            : normal / warning / critical against a threshold envelope
  - range_progress()      : position of a value inside the instrument range (0–100)
  - threshold_markers()   : threshold positions on the same 0–100 scale
  - classify_parameter()  : all of the above for one Parameter, plus config checks

Status rules for a threshold envelope [lo, hi] with span s = hi - lo:
  value < lo or value > hi                  → critical
  value < lo + 0.1·s or value > hi - 0.1·s  → warning
  otherwise                                 → normal
A zero span never divides: only exact equality is normal.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from src.data.models import Parameter, ParameterStatus

WARNING_BAND = 0.1  # fraction of the threshold span, measured inward from each bound


@dataclass(frozen=True)
class RangeProgress:
    percent: float
    degraded: bool = False  # zero-width instrument range, percent not computed


@dataclass(frozen=True)
class ParameterReading:
    """Derived per-parameter status published alongside the equipment graph."""
    parameter_id: str
    equipment_id: str
    status: ParameterStatus
    progress: RangeProgress
    min_marker: float
    max_marker: float
    config_degraded: bool


def classify(value: float, min_threshold: float, max_threshold: float) -> ParameterStatus:
    """
    Classify a value against its threshold envelope.

    Returns: ParameterStatus.NORMAL | WARNING | CRITICAL
    """
    if min_threshold == max_threshold:
        return ParameterStatus.NORMAL if value == min_threshold else ParameterStatus.CRITICAL

    if value < min_threshold or value > max_threshold:
        return ParameterStatus.CRITICAL

    band = WARNING_BAND * (max_threshold - min_threshold)
    if value < min_threshold + band or value > max_threshold - band:
        return ParameterStatus.WARNING
    return ParameterStatus.NORMAL


def range_progress(value: float, min_range: float, max_range: float) -> RangeProgress:
    """Percentage of the instrument range covered by `value`, clamped to [0, 100]."""
    if max_range == min_range:
        return RangeProgress(percent=0.0, degraded=True)
    pct = (value - min_range) / (max_range - min_range) * 100.0
    return RangeProgress(percent=float(np.clip(pct, 0.0, 100.0)))


def threshold_markers(parameter: Parameter) -> tuple[float, float]:
    """Positions of min/max threshold on the range progress scale."""
    lo = range_progress(parameter.min_threshold, parameter.min_range, parameter.max_range)
    hi = range_progress(parameter.max_threshold, parameter.min_range, parameter.max_range)
    return lo.percent, hi.percent


def envelope_is_consistent(parameter: Parameter) -> bool:
    """min_range ≤ min_threshold ≤ max_threshold ≤ max_range"""
    return (
        parameter.min_range <= parameter.min_threshold
        <= parameter.max_threshold <= parameter.max_range
    )


def classify_parameter(parameter: Parameter) -> ParameterReading:
    lo, hi = parameter.min_threshold, parameter.max_threshold
    if lo > hi:
        # Inverted envelope: classify against the normalised band
        lo, hi = hi, lo

    progress = range_progress(parameter.current_value, parameter.min_range, parameter.max_range)
    min_marker, max_marker = threshold_markers(parameter)

    return ParameterReading(
        parameter_id=parameter.id,
        equipment_id=parameter.equipment_id,
        status=classify(parameter.current_value, lo, hi),
        progress=progress,
        min_marker=min_marker,
        max_marker=max_marker,
        config_degraded=progress.degraded or not envelope_is_consistent(parameter),
    )
