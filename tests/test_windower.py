"""
tests/test_windower.py
──────────────────────
Tests for history windowing and bounded history fetches.
"""
import asyncio
import math
from datetime import timedelta

import pytest

from src.analytics.windower import HistoryWindower, window
from src.errors import FetchTimeout


class ListSource:
    def __init__(self, rows, delay_s=0.0):
        self.rows = rows
        self.delay_s = delay_s
        self.calls = []

    async def fetch_history(self, parameter_id, period_hours):
        self.calls.append((parameter_id, period_hours))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        return self.rows


class TestWindow:
    def test_keeps_only_samples_inside_period(self, make_samples, now):
        samples = make_samples([1.0, 2.0, 3.0, 4.0], step=timedelta(minutes=20))
        kept = window(samples, 0.5, now=now)
        assert [s.value for s in kept] == [3.0, 4.0]

    def test_boundary_sample_is_included(self, make_samples, now):
        samples = make_samples([1.0, 2.0], step=timedelta(hours=1))
        assert [s.value for s in window(samples, 1, now=now)] == [1.0, 2.0]

    def test_output_is_ascending(self, make_samples, now):
        samples = make_samples([1.0, 2.0, 3.0])
        kept = window(list(reversed(samples)), 1, now=now)
        assert [s.value for s in kept] == [1.0, 2.0, 3.0]

    def test_values_untouched(self, make_samples, now):
        samples = make_samples([1.23456, 9.87654])
        kept = window(samples, 1, now=now)
        assert kept == samples

    def test_arbitrary_period_accepted(self, make_samples, now):
        samples = make_samples([1.0] * 30, step=timedelta(minutes=10))
        assert len(window(samples, 2.75, now=now)) == 17

    @pytest.mark.parametrize("period", [0, -1, math.nan, math.inf])
    def test_invalid_period_rejected(self, make_samples, now, period):
        with pytest.raises(ValueError):
            window(make_samples([1.0]), period, now=now)


class TestHistoryWindower:
    @pytest.mark.asyncio
    async def test_fetch_filters_and_converts(self, now):
        rows = [
            {"timestamp": now - timedelta(hours=3), "value": 1.0},
            {"timestamp": now - timedelta(minutes=30), "value": 2.0},
            {"timestamp": (now - timedelta(minutes=5)).isoformat(), "value": "3.5"},
        ]
        source = ListSource(rows)
        samples = await HistoryWindower(source, timeout_s=1).fetch(10, 1, now=now)
        assert [s.value for s in samples] == [2.0, 3.5]
        assert all(s.parameter_id == "10" for s in samples)
        assert source.calls == [("10", 1)]

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self, now):
        rows = [
            {"timestamp": now, "value": 1.0},
            {"value": 2.0},
            {"timestamp": now, "value": "not-a-number"},
        ]
        samples = await HistoryWindower(ListSource(rows), timeout_s=1).fetch("10", 1, now=now)
        assert [s.value for s in samples] == [1.0]

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self, now):
        windower = HistoryWindower(ListSource([], delay_s=1.0), timeout_s=0.05)
        with pytest.raises(FetchTimeout):
            await windower.fetch("10", 1, now=now)

    @pytest.mark.asyncio
    async def test_invalid_period_checked_before_fetch(self):
        source = ListSource([])
        with pytest.raises(ValueError):
            await HistoryWindower(source, timeout_s=1).fetch("10", 0)
        assert source.calls == []
