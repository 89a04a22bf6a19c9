"""
tests/test_history.py
─────────────────────
Tests for the SQLite-backed parameter history.
"""
from datetime import timedelta

import pytest

from src.data.history import HistoryStore
from src.data.models import HistorySample, utcnow


@pytest.fixture
def history():
    store = HistoryStore(":memory:")
    yield store
    store.close()


def _sample(pid, ts, value):
    return HistorySample(parameter_id=pid, timestamp=ts, value=value)


class TestAppend:
    def test_counts(self, history, now):
        assert history.append([]) == 0
        assert history.append([_sample("10", now, 1.0), _sample("11", now, 2.0)]) == 2
        assert history.count() == 2
        assert history.count("10") == 1
        assert history.count(99) == 0


class TestGetHistory:
    def test_window_and_order(self, history, now):
        history.append([
            _sample("10", now, 3.0),
            _sample("10", now - timedelta(hours=2), 1.0),
            _sample("10", now - timedelta(hours=1), 2.0),
            _sample("11", now, 9.0),
        ])
        df = history.get_history("10", hours=1.5, now=now)
        assert list(df.columns) == ["parameter_id", "timestamp", "value"]
        assert df["value"].tolist() == [2.0, 3.0]
        assert df["timestamp"].is_monotonic_increasing
        assert str(df["timestamp"].dt.tz) == "UTC"

    def test_boundary_sample_included(self, history, now):
        history.append([_sample("10", now - timedelta(hours=1), 5.0)])
        assert len(history.get_history("10", hours=1, now=now)) == 1

    def test_empty(self, history, now):
        assert history.get_history("10", hours=1, now=now).empty


class TestFetchHistory:
    @pytest.mark.asyncio
    async def test_rows_for_the_windower(self, history):
        end = utcnow()
        history.append([_sample("10", end - timedelta(minutes=m), float(m)) for m in (30, 20, 10)])
        rows = await history.fetch_history("10", 1)
        assert [r["value"] for r in rows] == [30.0, 20.0, 10.0]
        assert all(r["timestamp"].tzinfo is not None for r in rows)

    @pytest.mark.asyncio
    async def test_unknown_parameter(self, history):
        assert await history.fetch_history("nope", 1) == []
