"""
src/data/store.py
─────────────────
Canonical in-memory equipment/parameter graph.

Provides:
  - upsert_equipment()  : insert or partially merge an equipment record
  - remove_equipment()  : delete an equipment and every parameter it owns
  - upsert_parameter()  : insert or partially merge a parameter into its owner
  - remove_parameter()  : delete a parameter from its owner
  - replace_all()       : swap in a full snapshot baseline
  - get_* / list_*      : deep-copied reads
  - snapshot()          : consistent view of the graph plus classifier output

Every write builds a fresh validated record and swaps it in while holding the
store lock, so readers never see a half-merged equipment. Each write
re-classifies the parameters it touched.

Thread safety: one RLock per store instance; the reconciler is the only writer.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from config.equipment import EquipmentType
from src.analytics.thresholds import ParameterReading, classify_parameter
from src.data.models import Equipment, Parameter
from src.errors import MalformedPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreSnapshot:
    version: int
    equipment: list[Equipment]
    readings: dict[str, ParameterReading] = field(default_factory=dict)


def _record_id(delta: dict[str, Any], kind: str) -> str:
    raw = delta.get("id")
    if raw is None or raw == "":
        raise MalformedPayload(f"{kind} record without id", delta)
    return str(raw)


def _equipment_base(equipment: Equipment) -> dict[str, Any]:
    return {
        **equipment.model_dump(exclude={"parameters"}),
        "parameters": [p.merge_base() for p in equipment.parameters],
    }


def _nested_parameters(delta: dict[str, Any]) -> list[dict[str, Any]] | None:
    """Parameter list carried by an equipment delta, if any."""
    if "parameters" in delta:
        return delta["parameters"] or []
    if "plc_parameters" in delta:
        return delta["plc_parameters"] or []
    return None


class StateStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._equipment: dict[str, Equipment] = {}
        self._owner: dict[str, str] = {}  # parameter id → equipment id
        self._readings: dict[str, ParameterReading] = {}
        self._version = 0

    # ── Validation helpers ────────────────────────────────────────────────────

    @staticmethod
    def _build_equipment(data: dict[str, Any]) -> Equipment:
        try:
            return Equipment.model_validate(data)
        except ValidationError as exc:
            raise MalformedPayload(f"invalid equipment {data.get('id')}: {exc.error_count()} error(s)", data) from exc

    @staticmethod
    def _build_parameter(data: dict[str, Any]) -> Parameter:
        try:
            return Parameter.model_validate(data)
        except ValidationError as exc:
            raise MalformedPayload(f"invalid parameter {data.get('id')}: {exc.error_count()} error(s)", data) from exc

    @staticmethod
    def _equipment_payload(equipment_id: str, delta: dict[str, Any], base: dict[str, Any]) -> dict[str, Any]:
        merged = dict(base)
        merged.update({k: v for k, v in delta.items() if k not in ("parameters", "plc_parameters")})
        merged["id"] = equipment_id
        nested = _nested_parameters(delta)
        if nested is not None:
            merged["parameters"] = [
                {**p, "equipment_id": p.get("equipment_id", equipment_id)} for p in nested
            ]
        return merged

    # ── Index maintenance (lock held) ─────────────────────────────────────────

    def _install(self, equipment: Equipment) -> None:
        previous = self._equipment.get(equipment.id)
        if previous is not None:
            self._forget_parameters(previous.parameters)
        self._equipment[equipment.id] = equipment
        for param in equipment.parameters:
            self._owner[param.id] = equipment.id
            self._readings[param.id] = classify_parameter(param)
        self._version += 1

    def _forget_parameters(self, params: Iterable[Parameter]) -> None:
        for param in params:
            self._owner.pop(param.id, None)
            self._readings.pop(param.id, None)

    # ── Writes ────────────────────────────────────────────────────────────────

    def upsert_equipment(self, delta: dict[str, Any]) -> Equipment:
        """
        Insert an unknown equipment or merge the fields present in `delta`
        into a known one. Parameters are only replaced when the delta carries
        a parameter list.
        """
        equipment_id = _record_id(delta, "equipment")
        with self._lock:
            existing = self._equipment.get(equipment_id)
            base = _equipment_base(existing) if existing is not None else {}
            equipment = self._build_equipment(self._equipment_payload(equipment_id, delta, base))
            if existing is None:
                logger.debug("Inserted equipment %s", equipment_id)
            self._install(equipment)
            return equipment.model_copy(deep=True)

    def remove_equipment(self, equipment_id: str) -> bool:
        equipment_id = str(equipment_id)
        with self._lock:
            equipment = self._equipment.pop(equipment_id, None)
            if equipment is None:
                return False
            self._forget_parameters(equipment.parameters)
            self._version += 1
            return True

    def upsert_parameter(self, delta: dict[str, Any]) -> Parameter | None:
        """
        Merge a parameter delta into its owner's parameter list.

        Returns None when the owning equipment is unknown; the caller decides
        whether to hold the delta for a later retry.
        """
        parameter_id = _record_id(delta, "parameter")
        with self._lock:
            raw_owner = delta.get("equipment_id")
            owner_id = str(raw_owner) if raw_owner not in (None, "") else self._owner.get(parameter_id)
            if owner_id is None or owner_id not in self._equipment:
                return None

            previous_owner = self._owner.get(parameter_id)
            existing = None
            if previous_owner is not None:
                existing = next(
                    p for p in self._equipment[previous_owner].parameters if p.id == parameter_id
                )
            base = existing.merge_base() if existing is not None else {}
            param = self._build_parameter({**base, **delta, "id": parameter_id, "equipment_id": owner_id})

            if previous_owner is not None and previous_owner != owner_id:
                # Parameter re-assigned to another equipment
                old = self._equipment[previous_owner]
                self._install(old.model_copy(
                    update={"parameters": [p for p in old.parameters if p.id != parameter_id]}
                ))

            owner = self._equipment[owner_id]
            params = list(owner.parameters)
            for idx, current in enumerate(params):
                if current.id == parameter_id:
                    params[idx] = param
                    break
            else:
                params.append(param)
            self._install(owner.model_copy(update={"parameters": params}))
            return param.model_copy(deep=True)

    def remove_parameter(self, parameter_id: str) -> bool:
        parameter_id = str(parameter_id)
        with self._lock:
            owner_id = self._owner.get(parameter_id)
            if owner_id is None:
                return False
            owner = self._equipment[owner_id]
            self._install(owner.model_copy(
                update={"parameters": [p for p in owner.parameters if p.id != parameter_id]}
            ))
            return True

    def replace_all(self, records: Iterable[dict[str, Any]]) -> list[MalformedPayload]:
        """
        Replace the whole graph with a snapshot baseline.

        Malformed records are skipped and returned; the rest of the baseline
        is still applied.
        """
        built: dict[str, Equipment] = {}
        skipped: list[MalformedPayload] = []
        for record in records:
            try:
                equipment_id = _record_id(record, "equipment")
                built[equipment_id] = self._build_equipment(
                    self._equipment_payload(equipment_id, record, {})
                )
            except MalformedPayload as exc:
                logger.warning("Skipping snapshot record: %s", exc)
                skipped.append(exc)

        with self._lock:
            self._equipment = {}
            self._owner = {}
            self._readings = {}
            for equipment in built.values():
                self._install(equipment)
            self._version += 1
        return skipped

    # ── Reads ─────────────────────────────────────────────────────────────────

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def get_equipment(self, equipment_id: str) -> Equipment | None:
        with self._lock:
            equipment = self._equipment.get(str(equipment_id))
            return equipment.model_copy(deep=True) if equipment is not None else None

    def list_equipment(self, equipment_type: EquipmentType | str | None = None) -> list[Equipment]:
        wanted = EquipmentType(equipment_type) if equipment_type is not None else None
        with self._lock:
            return [
                e.model_copy(deep=True)
                for e in self._equipment.values()
                if wanted is None or e.type is wanted
            ]

    def find_owner(self, parameter_id: str) -> str | None:
        with self._lock:
            return self._owner.get(str(parameter_id))

    def get_parameter(self, parameter_id: str) -> Parameter | None:
        parameter_id = str(parameter_id)
        with self._lock:
            owner_id = self._owner.get(parameter_id)
            if owner_id is None:
                return None
            for param in self._equipment[owner_id].parameters:
                if param.id == parameter_id:
                    return param.model_copy(deep=True)
            return None

    def reading(self, parameter_id: str) -> ParameterReading | None:
        with self._lock:
            return self._readings.get(str(parameter_id))

    def readings(self) -> dict[str, ParameterReading]:
        with self._lock:
            return dict(self._readings)

    def snapshot(self, equipment_type: EquipmentType | str | None = None) -> StoreSnapshot:
        """Graph and classifier output taken under one lock acquisition."""
        with self._lock:
            equipment = self.list_equipment(equipment_type)
            wanted = {p.id for e in equipment for p in e.parameters}
            return StoreSnapshot(
                version=self._version,
                equipment=equipment,
                readings={pid: r for pid, r in self._readings.items() if pid in wanted},
            )
