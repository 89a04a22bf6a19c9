"""
tests/conftest.py
─────────────────
Shared pytest fixtures for the telemetry engine test suite.
"""
import asyncio
import copy
import os
from datetime import datetime, timedelta, timezone

import pytest

# Use in-memory SQLite and short budgets for tests
os.environ.setdefault("HISTORY_DB_PATH", ":memory:")
os.environ.setdefault("HISTORY_HOURS", "24")
os.environ.setdefault("SIMULATION_SEED", "42")
os.environ.setdefault("SNAPSHOT_TIMEOUT_S", "2")
os.environ.setdefault("HISTORY_TIMEOUT_S", "2")
os.environ.setdefault("ACK_TIMEOUT_S", "2")


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def kiln_record() -> dict:
    """Kiln 1 with a single zone temperature, as delivered by the snapshot."""
    return {
        "id": 1,
        "name": "Tunnel Kiln 1",
        "type": "kiln",
        "status": "firing",
        "parameters": [
            {
                "id": 10,
                "parameter_name": "Zone 1 Temperature",
                "current_value": 950.0,
                "unit": "°C",
                "min_range": 0.0,
                "max_range": 1400.0,
                "min_threshold": 900.0,
                "max_threshold": 1000.0,
            }
        ],
    }


@pytest.fixture
def dryer_record() -> dict:
    return {
        "id": 3,
        "name": "Chamber Dryer 1",
        "type": "dryer",
        "status": "drying",
        "parameters": [
            {
                "id": 20,
                "equipment_id": 3,
                "parameter_name": "Humidity",
                "current_value": 50.0,
                "unit": "%",
                "min_range": 0.0,
                "max_range": 100.0,
                "min_threshold": 30.0,
                "max_threshold": 70.0,
            }
        ],
    }


@pytest.fixture
def store():
    from src.data.store import StateStore
    return StateStore()


@pytest.fixture
def feed():
    from src.data.feed import InMemoryChangeFeed
    return InMemoryChangeFeed()


@pytest.fixture
def make_samples(now):
    """Build an ascending HistorySample series ending at `now`, one per minute."""
    from src.data.models import HistorySample

    def _make(values, parameter_id="10", step=timedelta(minutes=1), end=None):
        end = end or now
        n = len(values)
        return [
            HistorySample(parameter_id=parameter_id, timestamp=end - step * (n - 1 - i), value=v)
            for i, v in enumerate(values)
        ]

    return _make


class GatedSnapshotSource:
    """Snapshot source that blocks until the test releases it."""

    def __init__(self, records):
        self.records = records
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def fetch_snapshot(self):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return copy.deepcopy(self.records)


@pytest.fixture
def gated_source(kiln_record):
    return GatedSnapshotSource([kiln_record])


def equipment_event(event_type, new=None, old=None):
    return {"eventType": event_type, "table": "equipment", "new": new, "old": old}


def parameter_event(event_type, new=None, old=None):
    return {"eventType": event_type, "table": "plc_parameters", "new": new, "old": old}
