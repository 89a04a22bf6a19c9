"""
src/errors.py
─────────────
Typed error kinds raised or recorded by the telemetry engine.

Ingestion failures (malformed payloads, orphaned parameters) are contained
inside the reconciler: they are logged and counted, never raised to the feed.
Consumer-facing calls (acknowledge, trend view) raise these to the caller.
"""
from __future__ import annotations


class TelemetryError(Exception):
    """Base class for every engine error."""


class FetchTimeout(TelemetryError):
    """An I/O call exceeded its time budget. Recoverable on the next refresh."""

    def __init__(self, operation: str, timeout_s: float):
        super().__init__(f"{operation} timed out after {timeout_s:g}s")
        self.operation = operation
        self.timeout_s = timeout_s


class MalformedPayload(TelemetryError):
    """A feed event or fetched record lacks required identity fields."""

    def __init__(self, reason: str, payload: object = None):
        super().__init__(reason)
        self.reason = reason
        self.payload = payload


class UnknownOwner(TelemetryError):
    """A parameter delta references an equipment id that never appeared."""

    def __init__(self, parameter_id: str, equipment_id: str):
        super().__init__(f"parameter {parameter_id} references unknown equipment {equipment_id}")
        self.parameter_id = parameter_id
        self.equipment_id = equipment_id


class AlertNotFound(TelemetryError):
    def __init__(self, alert_id: str):
        super().__init__(f"alert {alert_id} not found")
        self.alert_id = alert_id


class ParameterNotFound(TelemetryError):
    def __init__(self, parameter_id: str):
        super().__init__(f"parameter {parameter_id} not found")
        self.parameter_id = parameter_id


class StoreDegraded(TelemetryError):
    """The startup snapshot failed; the store only reflects live events."""
