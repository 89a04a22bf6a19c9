"""
tests/test_monitor.py
─────────────────────
End-to-end tests for the TelemetryMonitor facade against the simulated plant.
"""
from datetime import timedelta

import pytest

from config.alerts import AlertType
from src.data.feed import InMemoryChangeFeed
from src.data.history import HistoryStore
from src.data.models import Alert, utcnow
from src.data.simulator import (
    SimulatedAlertBackend,
    SimulatedSnapshotSource,
    generate_change_events,
    generate_history,
    generate_plant,
)
from src.engine.monitor import TelemetryMonitor
from src.errors import ParameterNotFound, StoreDegraded


@pytest.fixture
def plant():
    return generate_plant(seed=7)


@pytest.fixture
def history(plant):
    store = HistoryStore(":memory:")
    store.append(generate_history(plant, hours=24, seed=7))
    yield store
    store.close()


def _monitor(plant, history, fail=False, backend=None):
    return TelemetryMonitor(
        snapshot_source=SimulatedSnapshotSource(plant, fail=fail),
        feed=InMemoryChangeFeed(),
        history_source=history,
        alert_backend=backend,
    )


class TestCurrentState:
    @pytest.mark.asyncio
    async def test_start_loads_the_plant(self, plant, history):
        monitor = _monitor(plant, history)
        health = await monitor.start()
        state = monitor.current_state()

        assert health.store_degraded is False
        assert [e.id for e in state.equipment] == ["1", "2", "3", "4"]
        assert len(state.readings) == sum(len(e["parameters"]) for e in plant)
        monitor.ensure_consistent()
        monitor.stop()

    @pytest.mark.asyncio
    async def test_type_filter_scopes_readings_and_badges(self, plant, history, now):
        monitor = _monitor(plant, history)
        await monitor.start()
        monitor.alerts.load([
            Alert(id="k", equipment_id=1, alert_type=AlertType.CRITICAL, title="hot", created_at=now),
            Alert(id="d", equipment_id=3, alert_type=AlertType.WARNING, title="wet", created_at=now),
        ])

        state = monitor.current_state("dryer")
        dryer_params = {str(p["id"]) for e in plant if e["type"] == "dryer" for p in e["parameters"]}
        assert [e.id for e in state.equipment] == ["3", "4"]
        assert set(state.readings) == dryer_params
        assert set(state.alert_counts) == {"3"}

    @pytest.mark.asyncio
    async def test_live_events_reach_the_state(self, plant, history):
        monitor = _monitor(plant, history)
        await monitor.start()
        events = generate_change_events(plant, n=40, seed=7)
        for payload in events:
            monitor.reconciler.feed.publish(payload)

        expected = {}
        for payload in events:
            if payload["table"] == "plc_parameters":
                expected[str(payload["new"]["id"])] = payload["new"]["current_value"]
        for pid, value in expected.items():
            assert monitor.store.get_parameter(pid).current_value == value
        assert monitor.current_state().health.applied_events == len(events)

    @pytest.mark.asyncio
    async def test_failed_snapshot_reported_as_degraded(self, plant, history):
        monitor = _monitor(plant, history, fail=True)
        await monitor.start()

        assert monitor.current_state().store_degraded is True
        with pytest.raises(StoreDegraded):
            monitor.ensure_consistent()


class TestTrendView:
    @pytest.mark.asyncio
    async def test_window_ends_at_current_value(self, plant, history):
        monitor = _monitor(plant, history)
        await monitor.start()
        param = plant[0]["parameters"][0]

        view = await monitor.trend_view(str(param["id"]), 6)
        assert view.summary.count == len(view.samples) > 10
        assert view.samples == sorted(view.samples, key=lambda s: s.timestamp)
        assert view.samples[0].timestamp >= utcnow() - timedelta(hours=6, minutes=1)
        assert view.samples[-1].value == pytest.approx(param["current_value"], abs=1e-3)
        assert view.reading.parameter_id == str(param["id"])

    @pytest.mark.asyncio
    async def test_default_period_per_equipment_type(self, plant, history):
        monitor = _monitor(plant, history)
        await monitor.start()
        dryer_param = plant[2]["parameters"][0]

        view = await monitor.trend_view(str(dryer_param["id"]))
        assert view.period_hours == 4
        assert [p.label for p in view.periods] == ["1/2H", "1H", "2H", "4H", "8H"]
        assert view.samples[0].timestamp >= utcnow() - timedelta(hours=4, minutes=1)

    @pytest.mark.asyncio
    async def test_unknown_parameter(self, plant, history):
        monitor = _monitor(plant, history)
        await monitor.start()
        with pytest.raises(ParameterNotFound):
            await monitor.trend_view("999", 1)


class TestAcknowledge:
    @pytest.mark.asyncio
    async def test_round_trip(self, plant, history, now):
        backend = SimulatedAlertBackend()
        monitor = _monitor(plant, history, backend=backend)
        await monitor.start()
        monitor.alerts.load([
            Alert(id="k", equipment_id=1, alert_type=AlertType.CRITICAL, title="hot", created_at=now),
        ])

        acked = await monitor.acknowledge("k")
        assert acked.is_acknowledged is True
        assert [a for a, _ in backend.acknowledged] == ["k"]
        assert monitor.current_state().alert_counts == {}
