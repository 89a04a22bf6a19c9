"""
config/equipment.py
───────────────────
Equipment vocabularies and trend period catalogue.

Kilns change slowly over a firing cycle, so their trend periods span up to a
week. Dryers are inspected over much shorter windows.
"""
from dataclasses import dataclass
from enum import Enum


class EquipmentType(str, Enum):
    KILN = "kiln"
    DRYER = "dryer"


class EquipmentStatus(str, Enum):
    FIRING = "firing"
    DRYING = "drying"
    STANDBY = "standby"
    IDLE = "idle"
    OFFLINE = "offline"


@dataclass(frozen=True)
class TrendPeriod:
    label: str
    hours: float


TREND_PERIODS: dict[EquipmentType, tuple[TrendPeriod, ...]] = {
    EquipmentType.DRYER: (
        TrendPeriod("1/2H", 0.5),
        TrendPeriod("1H", 1),
        TrendPeriod("2H", 2),
        TrendPeriod("4H", 4),
        TrendPeriod("8H", 8),
    ),
    EquipmentType.KILN: (
        TrendPeriod("1H", 1),
        TrendPeriod("6H", 6),
        TrendPeriod("12H", 12),
        TrendPeriod("24H", 24),
        TrendPeriod("7D", 168),
    ),
}

DEFAULT_TREND_HOURS: dict[EquipmentType, float] = {
    EquipmentType.DRYER: 4,
    EquipmentType.KILN: 24,
}


def trend_periods(equipment_type: EquipmentType | str) -> tuple[TrendPeriod, ...]:
    """Selectable trend periods for an equipment type."""
    return TREND_PERIODS[EquipmentType(equipment_type)]
