"""
app.py
──────
Kiln & Dryer Telemetry Engine — local entry point against the simulated plant.

Startup sequence:
  1. Configure logging and seed the history series if it is empty
  2. Subscribe to the change feed and load the snapshot baseline
     (events published during the fetch are buffered and replayed)
  3. Load upstream alerts and stream simulated parameter updates
  4. Log the dashboard summary and a trend view for every kiln parameter
"""
import asyncio
import logging

from config.equipment import EquipmentType
from config.settings import settings
from src.data.feed import InMemoryChangeFeed
from src.data.history import HistoryStore
from src.data.simulator import (
    SimulatedAlertBackend,
    SimulatedSnapshotSource,
    derive_alerts,
    generate_change_events,
    generate_history,
    generate_plant,
)
from src.engine.monitor import TelemetryMonitor

logger = logging.getLogger("telemetry")


async def main() -> None:
    # ── 1. History ────────────────────────────────────────────────────────────
    plant = generate_plant()
    history = HistoryStore()
    if history.count() == 0:
        logger.info("Seeding %dh of simulated history...", settings.HISTORY_HOURS)
        history.append(generate_history(plant))

    # ── 2. Reconcile snapshot + feed ──────────────────────────────────────────
    feed = InMemoryChangeFeed()
    monitor = TelemetryMonitor(
        snapshot_source=SimulatedSnapshotSource(plant, delay_s=0.2),
        feed=feed,
        history_source=history,
        alert_backend=SimulatedAlertBackend(),
    )
    events = generate_change_events(plant)
    startup = asyncio.create_task(monitor.start())
    await asyncio.sleep(0)
    for payload in events[: len(events) // 2]:
        feed.publish(payload)  # lands in the startup buffer
    health = await startup
    logger.info("Sync: mode=%s degraded=%s", health.mode.value, health.store_degraded)

    # ── 3. Alerts + live updates ──────────────────────────────────────────────
    monitor.alerts.load(derive_alerts(plant))
    for payload in events[len(events) // 2:]:
        feed.publish(payload)

    # ── 4. Summary ────────────────────────────────────────────────────────────
    state = monitor.current_state()
    for equipment in state.equipment:
        badge = state.alert_counts.get(equipment.id)
        logger.info(
            "%-16s %-8s %-8s alerts=%d",
            equipment.name, equipment.type.value, equipment.status.value,
            badge.alert_count if badge else 0,
        )
        for param in equipment.parameters:
            reading = state.readings[param.id]
            logger.info("    %-20s %10.2f %-6s %s", param.parameter_name, param.current_value,
                        param.unit, reading.status.value)

    for equipment in monitor.current_state(EquipmentType.KILN).equipment:
        for param in equipment.parameters:
            view = await monitor.trend_view(param.id)
            logger.info("Trend %-20s %s over %d samples", param.parameter_name,
                        view.summary.direction.value, view.summary.count)

    counts = monitor.alerts.counts()
    logger.info("Alerts: %s", counts.filter_counts)
    monitor.stop()
    history.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    asyncio.run(main())
