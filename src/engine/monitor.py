"""
src/engine/monitor.py
─────────────────────
Consumer-facing facade over the telemetry engine.

Wires the State Store, Change Reconciler, Alert Manager and History Windower
and exposes the read models the UI layer renders:
  - current_state()  : equipment graph + per-parameter status + alert badges
  - trend_view()     : history window, trend direction and stats for one parameter
  - acknowledge()    : alert acknowledge round-trip
"""
from __future__ import annotations

from dataclasses import dataclass

from config.equipment import DEFAULT_TREND_HOURS, EquipmentType, TrendPeriod, trend_periods
from config.settings import settings
from src.analytics.thresholds import ParameterReading
from src.analytics.trend import TrendSummary, summarize
from src.analytics.windower import HistoryWindower
from src.data.feed import AlertBackend, ChangeFeed, HistorySource, SnapshotSource
from src.data.models import Alert, Equipment, HistorySample, Parameter
from src.data.store import StateStore
from src.engine.alerts import AlertManager, EquipmentAlertCount
from src.engine.reconciler import ChangeReconciler, SyncHealth
from src.errors import ParameterNotFound, StoreDegraded


@dataclass(frozen=True)
class DashboardState:
    version: int
    equipment: list[Equipment]
    readings: dict[str, ParameterReading]
    alert_counts: dict[str, EquipmentAlertCount]
    store_degraded: bool
    health: SyncHealth


@dataclass(frozen=True)
class TrendView:
    parameter: Parameter
    reading: ParameterReading | None
    period_hours: float
    periods: tuple[TrendPeriod, ...]
    samples: list[HistorySample]
    summary: TrendSummary


class TelemetryMonitor:
    def __init__(
        self,
        snapshot_source: SnapshotSource,
        feed: ChangeFeed,
        history_source: HistorySource,
        alert_backend: AlertBackend | None = None,
        store: StateStore | None = None,
    ):
        self.store = store or StateStore()
        self.reconciler = ChangeReconciler(
            self.store, snapshot_source, feed, fetch_timeout_s=settings.SNAPSHOT_TIMEOUT_S
        )
        self.alerts = AlertManager(self.store, alert_backend, ack_timeout_s=settings.ACK_TIMEOUT_S)
        self.windower = HistoryWindower(history_source, timeout_s=settings.HISTORY_TIMEOUT_S)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> SyncHealth:
        return await self.reconciler.start()

    async def refresh(self) -> bool:
        return await self.reconciler.refresh()

    def stop(self) -> None:
        self.reconciler.stop()

    # ── Reads ─────────────────────────────────────────────────────────────────

    def current_state(self, equipment_type: EquipmentType | str | None = None) -> DashboardState:
        snap = self.store.snapshot(equipment_type)
        wanted = {e.id for e in snap.equipment}
        badges = {
            eq_id: count
            for eq_id, count in self.alerts.equipment_alert_counts().items()
            if eq_id in wanted
        }
        health = self.reconciler.health
        return DashboardState(
            version=snap.version,
            equipment=snap.equipment,
            readings=snap.readings,
            alert_counts=badges,
            store_degraded=health.store_degraded,
            health=health,
        )

    def ensure_consistent(self) -> None:
        """Raise StoreDegraded when the store was never seeded by a snapshot."""
        if self.reconciler.store_degraded:
            raise StoreDegraded("equipment state reflects live events only; no snapshot baseline")

    async def trend_view(self, parameter_id: str, period_hours: float | None = None) -> TrendView:
        """
        History window and trend for one parameter. Without `period_hours`
        the default period for the owning equipment type is used; `periods`
        lists the selectable ones.

        Raises:
            ParameterNotFound: parameter unknown to the store
            FetchTimeout: history fetch exceeded its budget
        """
        parameter = self.store.get_parameter(parameter_id)
        if parameter is None:
            raise ParameterNotFound(str(parameter_id))
        equipment = self.store.get_equipment(parameter.equipment_id)
        if equipment is None:
            # Removed between the two reads
            raise ParameterNotFound(str(parameter_id))
        if period_hours is None:
            period_hours = DEFAULT_TREND_HOURS[equipment.type]

        samples = await self.windower.fetch(parameter.id, period_hours)
        return TrendView(
            parameter=parameter,
            reading=self.store.reading(parameter.id),
            period_hours=period_hours,
            periods=trend_periods(equipment.type),
            samples=samples,
            summary=summarize(samples),
        )

    async def acknowledge(self, alert_id: str) -> Alert:
        return await self.alerts.acknowledge_async(alert_id)
