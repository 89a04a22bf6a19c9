"""
src/data/simulator.py
─────────────────────
Synthetic kiln/dryer plant for local runs and tests.

Generates:
  - A snapshot of two kilns and two dryers with nested PLC parameters
  - Parameter history (one sample every 5 minutes) around each baseline
  - A stream of change-feed events: random-walk parameter updates and the
    occasional equipment status change
  - Upstream alerts derived from the threshold classifier

Design:
  - Reproducible with SIMULATION_SEED for consistent demos
  - Records are plain dicts shaped like the backing store rows, so they go
    through the same normalisation as real payloads
"""
from __future__ import annotations

import asyncio
import copy
import uuid
from datetime import datetime, timedelta
from typing import Any

import numpy as np

from config.alerts import ALERT_TYPE_LABELS, AlertType
from config.equipment import EquipmentStatus, EquipmentType
from config.settings import settings
from src.analytics.thresholds import classify
from src.data.models import Alert, HistorySample, ParameterStatus, utcnow

# ── Plant definition ──────────────────────────────────────────────────────────
# name, unit, min_range, max_range, min_threshold, max_threshold, baseline, noise σ

_KILN_PARAMS = [
    ("Zone 1 Temperature", "°C", 0.0, 1400.0, 900.0, 1000.0, 950.0, 6.0),
    ("Zone 2 Temperature", "°C", 0.0, 1400.0, 1050.0, 1150.0, 1100.0, 6.0),
    ("Draft Pressure", "mmH2O", 0.0, 50.0, 10.0, 30.0, 20.0, 1.2),
    ("Oxygen", "%", 0.0, 21.0, 2.0, 8.0, 5.0, 0.3),
]

_DRYER_PARAMS = [
    ("Air Temperature", "°C", 0.0, 150.0, 60.0, 90.0, 75.0, 1.5),
    ("Humidity", "%", 0.0, 100.0, 30.0, 70.0, 50.0, 2.0),
    ("Fan Speed", "rpm", 0.0, 1800.0, 600.0, 1500.0, 1100.0, 25.0),
]

PLANT_LAYOUT: list[dict[str, Any]] = [
    {"id": 1, "name": "Tunnel Kiln 1", "type": EquipmentType.KILN, "status": EquipmentStatus.FIRING},
    {"id": 2, "name": "Shuttle Kiln 2", "type": EquipmentType.KILN, "status": EquipmentStatus.STANDBY},
    {"id": 3, "name": "Chamber Dryer 1", "type": EquipmentType.DRYER, "status": EquipmentStatus.DRYING},
    {"id": 4, "name": "Chamber Dryer 2", "type": EquipmentType.DRYER, "status": EquipmentStatus.IDLE},
]

# Statuses each type may move between in simulated status changes
_STATUS_CYCLE: dict[EquipmentType, list[EquipmentStatus]] = {
    EquipmentType.KILN: [EquipmentStatus.FIRING, EquipmentStatus.STANDBY, EquipmentStatus.IDLE],
    EquipmentType.DRYER: [EquipmentStatus.DRYING, EquipmentStatus.STANDBY, EquipmentStatus.IDLE],
}

# Noise σ per parameter name
_NOISE: dict[str, float] = {t[0]: t[7] for t in _KILN_PARAMS + _DRYER_PARAMS}


def generate_plant(seed: int = settings.SIMULATION_SEED, now: datetime | None = None) -> list[dict[str, Any]]:
    """Snapshot records: equipment rows with nested `parameters` lists."""
    rng = np.random.default_rng(seed)
    now = now or utcnow()
    plant: list[dict[str, Any]] = []
    param_id = 10

    for layout in PLANT_LAYOUT:
        templates = _KILN_PARAMS if layout["type"] is EquipmentType.KILN else _DRYER_PARAMS
        params = []
        for name, unit, r_lo, r_hi, t_lo, t_hi, base, sigma in templates:
            value = base + rng.normal(0, sigma)
            params.append({
                "id": param_id,
                "equipment_id": layout["id"],
                "parameter_name": name,
                "current_value": round(float(np.clip(value, r_lo, r_hi)), 2),
                "unit": unit,
                "min_range": r_lo,
                "max_range": r_hi,
                "min_threshold": t_lo,
                "max_threshold": t_hi,
                "last_updated": now.isoformat(),
            })
            param_id += 1

        plant.append({
            "id": layout["id"],
            "name": layout["name"],
            "type": layout["type"].value,
            "status": layout["status"].value,
            "is_active": layout["status"] is not EquipmentStatus.IDLE,
            "parameters": params,
        })
    return plant


def _parameters(plant: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [p for eq in plant for p in eq["parameters"]]


def generate_history(
    plant: list[dict[str, Any]],
    hours: float = settings.HISTORY_HOURS,
    step_minutes: int = 5,
    end: datetime | None = None,
    seed: int = settings.SIMULATION_SEED,
) -> list[HistorySample]:
    """
    Random-walk history ending at each parameter's current value.
    Returns samples for every parameter, ascending per parameter.
    """
    rng = np.random.default_rng(seed)
    end = (end or utcnow()).replace(second=0, microsecond=0)
    steps = max(1, int(hours * 60 // step_minutes))
    samples: list[HistorySample] = []

    for param in _parameters(plant):
        sigma = _NOISE.get(param["parameter_name"], 1.0)
        # Walk backwards from the current value so the series meets the snapshot
        walk = np.cumsum(rng.normal(0, sigma * 0.25, steps))[::-1]
        values = np.clip(param["current_value"] + walk - walk[-1], param["min_range"], param["max_range"])
        for i, value in enumerate(values):
            ts = end - timedelta(minutes=step_minutes * (steps - 1 - i))
            samples.append(HistorySample(parameter_id=str(param["id"]), timestamp=ts, value=round(float(value), 3)))
    return samples


def generate_change_events(
    plant: list[dict[str, Any]],
    n: int = settings.SIMULATION_EVENTS,
    seed: int = settings.SIMULATION_SEED,
    status_change_prob: float = 0.05,
) -> list[dict[str, Any]]:
    """
    Change-feed payloads against `plant`. The plant dicts are not modified;
    the walk state is tracked on copies.
    """
    rng = np.random.default_rng(seed + 1)
    state = copy.deepcopy(plant)
    params = _parameters(state)
    events: list[dict[str, Any]] = []

    for _ in range(n):
        if rng.random() < status_change_prob:
            eq = state[int(rng.integers(0, len(state)))]
            choices = [s for s in _STATUS_CYCLE[EquipmentType(eq["type"])] if s.value != eq["status"]]
            eq["status"] = choices[int(rng.integers(0, len(choices)))].value
            events.append({
                "eventType": "UPDATE",
                "table": "equipment",
                "new": {"id": eq["id"], "status": eq["status"]},
                "old": None,
            })
            continue

        param = params[int(rng.integers(0, len(params)))]
        sigma = _NOISE.get(param["parameter_name"], 1.0)
        value = np.clip(param["current_value"] + rng.normal(0, sigma), param["min_range"], param["max_range"])
        param["current_value"] = round(float(value), 2)
        param["last_updated"] = utcnow().isoformat()
        events.append({
            "eventType": "UPDATE",
            "table": "plc_parameters",
            "new": dict(param),
            "old": None,
        })
    return events


def derive_alerts(plant: list[dict[str, Any]], now: datetime | None = None) -> list[Alert]:
    """One alert per parameter currently in warning or critical state."""
    now = now or utcnow()
    alerts: list[Alert] = []
    for eq in plant:
        for param in eq["parameters"]:
            status = classify(param["current_value"], param["min_threshold"], param["max_threshold"])
            if status is ParameterStatus.NORMAL:
                continue
            alert_type = AlertType.CRITICAL if status is ParameterStatus.CRITICAL else AlertType.WARNING
            alerts.append(Alert(
                id=str(uuid.uuid4()),
                equipment_id=eq["id"],
                parameter_name=param["parameter_name"],
                alert_type=alert_type,
                title=f"{param['parameter_name']} {ALERT_TYPE_LABELS[alert_type]}",
                message=(
                    f"{eq['name']}: {param['parameter_name']} = {param['current_value']:.1f} {param['unit']} "
                    f"(threshold {param['min_threshold']:g}–{param['max_threshold']:g})"
                ),
                created_at=now,
            ))
    return alerts


# ── Collaborator stand-ins ────────────────────────────────────────────────────

class SimulatedSnapshotSource:
    """Serves a copy of the plant after an optional delay; can be told to fail."""

    def __init__(self, plant: list[dict[str, Any]], delay_s: float = 0.0, fail: bool = False):
        self.plant = plant
        self.delay_s = delay_s
        self.fail = fail
        self.calls = 0

    async def fetch_snapshot(self) -> list[dict[str, Any]]:
        self.calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail:
            raise ConnectionError("snapshot backend unavailable")
        return copy.deepcopy(self.plant)


class SimulatedAlertBackend:
    """Records acknowledge calls."""

    def __init__(self, delay_s: float = 0.0):
        self.delay_s = delay_s
        self.acknowledged: list[tuple[str, datetime]] = []

    async def acknowledge(self, alert_id: str, at: datetime) -> None:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        self.acknowledged.append((alert_id, at))
