"""
src/analytics/trend.py
──────────────────────
Trend direction over a parameter's history window.

Algorithm: compare the mean of the last 5 samples with the mean of the 5
samples before them.
  diff = recent_avg - older_avg
  |diff| < 2% of |older_avg|  → stable
  diff > 0                    → rising
  otherwise                   → falling

With older_avg == 0 the stability band collapses to zero, so any movement
reads as rising or falling. A flat series is always stable, zero included.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from src.data.models import HistorySample, TrendDirection

TREND_WINDOW = 5
STABLE_FRACTION = 0.02


@dataclass(frozen=True)
class TrendSummary:
    direction: TrendDirection
    count: int
    latest: float | None = None
    minimum: float | None = None
    maximum: float | None = None
    mean: float | None = None
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None


def trend(samples: Sequence[HistorySample]) -> TrendDirection:
    """Classify the direction of an ascending sample series."""
    if len(samples) < 2 * TREND_WINDOW:
        return TrendDirection.NO_DATA

    values = np.array([s.value for s in samples[-2 * TREND_WINDOW:]], dtype=float)
    older_avg = float(values[:TREND_WINDOW].mean())
    recent_avg = float(values[TREND_WINDOW:].mean())

    diff = recent_avg - older_avg
    threshold = STABLE_FRACTION * abs(older_avg)

    if diff == 0.0 or abs(diff) < threshold:
        return TrendDirection.STABLE
    if diff > 0:
        return TrendDirection.RISING
    return TrendDirection.FALLING


def summarize(samples: Sequence[HistorySample]) -> TrendSummary:
    """Direction plus the descriptive statistics shown next to a trend chart."""
    direction = trend(samples)
    if not samples:
        return TrendSummary(direction=direction, count=0)

    values = np.array([s.value for s in samples], dtype=float)
    return TrendSummary(
        direction=direction,
        count=len(samples),
        latest=float(values[-1]),
        minimum=float(values.min()),
        maximum=float(values.max()),
        mean=round(float(values.mean()), 4),
        first_timestamp=samples[0].timestamp,
        last_timestamp=samples[-1].timestamp,
    )
