"""
src/engine/alerts.py
────────────────────
Alert lifecycle: Active → Acknowledged (terminal).

Alerts are produced upstream and loaded here; this manager owns only the
acknowledge transition. Acknowledging twice is a no-op that keeps the first
acknowledged_at. Counts and filtered lists are recomputed on every read.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from config.alerts import MAX_ALERTS_DISPLAY, AlertFilter, AlertType
from config.equipment import EquipmentType
from config.settings import settings
from src.data.feed import AlertBackend, bounded
from src.data.models import Alert, utcnow
from src.data.store import StateStore
from src.errors import AlertNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertCounts:
    by_type: dict[str, int]
    active: int
    acknowledged: int
    total: int

    @property
    def filter_counts(self) -> dict[str, int]:
        """Badge counts for the alert list filters."""
        return {
            AlertFilter.ACTIVE.value: self.active,
            AlertFilter.CRITICAL.value: self.by_type.get(AlertType.CRITICAL.value, 0),
            AlertFilter.WARNING.value: self.by_type.get(AlertType.WARNING.value, 0),
            AlertFilter.ALL.value: self.total,
        }


@dataclass(frozen=True)
class AlertView:
    """An alert joined with its equipment's name and type."""
    alert: Alert
    equipment_name: str | None
    equipment_type: EquipmentType | None


@dataclass(frozen=True)
class EquipmentAlertCount:
    alert_count: int
    critical_alerts: int


def _matches(alert: Alert, alert_filter: AlertFilter) -> bool:
    if alert_filter is AlertFilter.ACTIVE:
        return alert.is_active
    if alert_filter is AlertFilter.CRITICAL:
        return alert.alert_type is AlertType.CRITICAL
    if alert_filter is AlertFilter.WARNING:
        return alert.alert_type is AlertType.WARNING
    return True


class AlertManager:
    def __init__(
        self,
        store: StateStore,
        backend: AlertBackend | None = None,
        ack_timeout_s: float = settings.ACK_TIMEOUT_S,
    ):
        self.store = store
        self.backend = backend
        self.ack_timeout_s = ack_timeout_s
        self._lock = threading.RLock()
        self._alerts: dict[str, Alert] = {}
        self._inflight: dict[str, asyncio.Future[Alert]] = {}

    # ── Intake from the upstream producer ─────────────────────────────────────

    def upsert(self, alert: Alert | dict[str, Any]) -> Alert:
        """Add or refresh an alert. An acknowledged alert never becomes active again."""
        incoming = alert if isinstance(alert, Alert) else Alert.model_validate(alert)
        with self._lock:
            current = self._alerts.get(incoming.id)
            if current is not None and current.is_acknowledged:
                incoming = incoming.model_copy(update={
                    "is_acknowledged": True,
                    "acknowledged_at": current.acknowledged_at,
                })
            self._alerts[incoming.id] = incoming
            return incoming

    def load(self, alerts: Iterable[Alert | dict[str, Any]]) -> int:
        """Bulk upsert; invalid records are skipped. Returns the number loaded."""
        loaded = 0
        for alert in alerts:
            try:
                self.upsert(alert)
            except ValidationError as exc:
                logger.warning("Skipping malformed alert %s: %d error(s)",
                               alert.get("id") if isinstance(alert, dict) else "?", exc.error_count())
                continue
            loaded += 1
        return loaded

    # ── Acknowledge ───────────────────────────────────────────────────────────

    def get(self, alert_id: str) -> Alert:
        with self._lock:
            alert = self._alerts.get(str(alert_id))
        if alert is None:
            raise AlertNotFound(str(alert_id))
        return alert

    def acknowledge(self, alert_id: str, now: datetime | None = None) -> Alert:
        """
        Acknowledge an active alert.

        Returns the alert as stored after the call.

        Raises:
            AlertNotFound: no alert with this id
        """
        alert_id = str(alert_id)
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise AlertNotFound(alert_id)
            if alert.is_acknowledged:
                return alert
            at = max(now or utcnow(), alert.created_at)
            acked = alert.model_copy(update={"is_acknowledged": True, "acknowledged_at": at})
            self._alerts[alert_id] = acked
        logger.info("Alert %s acknowledged", alert_id)
        return acked

    async def acknowledge_async(self, alert_id: str) -> Alert:
        """
        Acknowledge through the backend first, then locally.

        Concurrent calls for the same alert share one backend round-trip, so
        the backend and the local record carry the same acknowledged_at.

        Raises:
            AlertNotFound: no alert with this id
            FetchTimeout: the backend call exceeded its budget
        """
        alert = self.get(alert_id)
        if alert.is_acknowledged or self.backend is None:
            return self.acknowledge(alert.id)

        inflight = self._inflight.get(alert.id)
        if inflight is None:
            inflight = asyncio.ensure_future(self._acknowledge_remote(alert))
            self._inflight[alert.id] = inflight
            inflight.add_done_callback(lambda _, key=alert.id: self._inflight.pop(key, None))
        # A cancelled caller must not cancel the round-trip other callers wait on
        return await asyncio.shield(inflight)

    async def _acknowledge_remote(self, alert: Alert) -> Alert:
        at = max(utcnow(), alert.created_at)
        await bounded(f"acknowledge alert {alert.id}", self.backend.acknowledge(alert.id, at), self.ack_timeout_s)
        return self.acknowledge(alert.id, now=at)

    # ── Reads ─────────────────────────────────────────────────────────────────

    def alerts(
        self,
        alert_filter: AlertFilter | str = AlertFilter.ALL,
        equipment_id: str | None = None,
        limit: int = MAX_ALERTS_DISPLAY,
    ) -> list[Alert]:
        """Alerts matching the filter, newest first."""
        alert_filter = AlertFilter(alert_filter)
        with self._lock:
            selected = [
                a for a in self._alerts.values()
                if _matches(a, alert_filter)
                and (equipment_id is None or a.equipment_id == str(equipment_id))
            ]
        selected.sort(key=lambda a: a.created_at, reverse=True)
        return selected[:limit]

    def counts(self) -> AlertCounts:
        with self._lock:
            alerts = list(self._alerts.values())
        by_type = Counter(a.alert_type.value for a in alerts)
        acknowledged = sum(1 for a in alerts if a.is_acknowledged)
        return AlertCounts(
            by_type={t.value: by_type.get(t.value, 0) for t in AlertType},
            active=len(alerts) - acknowledged,
            acknowledged=acknowledged,
            total=len(alerts),
        )

    def enriched(
        self,
        alert_filter: AlertFilter | str = AlertFilter.ALL,
        equipment_id: str | None = None,
        limit: int = MAX_ALERTS_DISPLAY,
    ) -> list[AlertView]:
        views = []
        for alert in self.alerts(alert_filter, equipment_id, limit):
            equipment = self.store.get_equipment(alert.equipment_id)
            views.append(AlertView(
                alert=alert,
                equipment_name=equipment.name if equipment else None,
                equipment_type=equipment.type if equipment else None,
            ))
        return views

    def equipment_alert_counts(self) -> dict[str, EquipmentAlertCount]:
        """Unacknowledged alert totals per equipment id."""
        totals: Counter[str] = Counter()
        critical: Counter[str] = Counter()
        with self._lock:
            for alert in self._alerts.values():
                if alert.is_acknowledged:
                    continue
                totals[alert.equipment_id] += 1
                if alert.alert_type is AlertType.CRITICAL:
                    critical[alert.equipment_id] += 1
        return {
            eq_id: EquipmentAlertCount(alert_count=n, critical_alerts=critical[eq_id])
            for eq_id, n in totals.items()
        }
