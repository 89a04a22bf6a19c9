"""
src/data/models.py
──────────────────
Pydantic v2 data models for equipment, PLC parameters, history samples and alerts.

Ids arrive from the backing store as integers or strings; both are normalised
to `str` so joins between the change feed, the snapshot and the alert list
never miss on a type mismatch. Naive timestamps are taken as UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr, model_validator

from config.alerts import AlertType
from config.equipment import EquipmentStatus, EquipmentType


def _as_id(value: object) -> object:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    return value


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


Identifier = Annotated[str, BeforeValidator(_as_id), Field(min_length=1)]
Timestamp = Annotated[datetime, AfterValidator(_as_utc)]


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ParameterStatus(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class TrendDirection(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"
    NO_DATA = "no_data"


class Parameter(BaseModel):
    id: Identifier
    equipment_id: Identifier
    parameter_name: str = ""
    current_value: float
    unit: str = ""
    min_range: float | None = None
    max_range: float | None = None
    min_threshold: float
    max_threshold: float
    last_updated: Timestamp = Field(default_factory=utcnow)

    # Range bounds that were filled in from the thresholds
    _derived_range: frozenset[str] = PrivateAttr(default=frozenset())

    @model_validator(mode="after")
    def _default_range_to_thresholds(self) -> Parameter:
        # Records without an instrument envelope fall back to the alert envelope
        derived = set()
        if self.min_range is None:
            self.min_range = self.min_threshold
            derived.add("min_range")
        if self.max_range is None:
            self.max_range = self.max_threshold
            derived.add("max_range")
        self._derived_range = frozenset(derived)
        return self

    def merge_base(self) -> dict:
        """
        Field values a delta is merged over. Derived range bounds are left out
        so they follow the thresholds on the next validation.
        """
        return self.model_dump(exclude=set(self._derived_range))


class Equipment(BaseModel):
    id: Identifier
    name: str = ""
    type: EquipmentType
    status: EquipmentStatus = EquipmentStatus.IDLE
    is_active: bool = True
    parameters: list[Parameter] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_ownership(self) -> Equipment:
        if not self.name:
            self.name = self.id
        for param in self.parameters:
            if param.equipment_id != self.id:
                raise ValueError(
                    f"parameter {param.id} belongs to equipment {param.equipment_id}, not {self.id}"
                )
        return self


class HistorySample(BaseModel):
    model_config = ConfigDict(frozen=True)

    parameter_id: Identifier
    timestamp: Timestamp
    value: float


class Alert(BaseModel):
    id: Identifier
    equipment_id: Identifier
    parameter_name: str | None = None
    alert_type: AlertType
    title: str
    message: str = ""
    created_at: Timestamp
    is_acknowledged: bool = False
    acknowledged_at: Timestamp | None = None

    @model_validator(mode="after")
    def _check_acknowledgement(self) -> Alert:
        if self.is_acknowledged != (self.acknowledged_at is not None):
            raise ValueError("acknowledged_at must be set if and only if is_acknowledged is true")
        if self.acknowledged_at is not None and self.acknowledged_at < self.created_at:
            raise ValueError("acknowledged_at precedes created_at")
        return self

    @property
    def is_active(self) -> bool:
        return not self.is_acknowledged
