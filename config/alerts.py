"""
config/alerts.py
────────────────
Alert types, list filters and display labels.
"""

from enum import Enum


class AlertType(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"
    STATUS_CHANGE = "status_change"


class AlertFilter(str, Enum):
    ACTIVE = "active"
    CRITICAL = "critical"
    WARNING = "warning"
    ALL = "all"


ALERT_TYPE_LABELS: dict[str, str] = {
    AlertType.CRITICAL: "Critical",
    AlertType.WARNING: "Warning",
    AlertType.INFO: "Info",
    AlertType.STATUS_CHANGE: "Status Change",
}

MAX_ALERTS_DISPLAY = 100
