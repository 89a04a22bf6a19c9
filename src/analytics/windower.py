"""
src/analytics/windower.py
─────────────────────────
Bounded history slices for trend views.

The windower never resamples or aggregates: it keeps the samples whose
timestamp falls inside [now - period, now], in ascending order, with their
values untouched.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from config.settings import settings
from src.data.feed import HistorySource, bounded
from src.data.models import HistorySample, utcnow

logger = logging.getLogger(__name__)


def _check_period(period_hours: float) -> None:
    if not math.isfinite(period_hours) or period_hours <= 0:
        raise ValueError(f"period_hours must be a positive number of hours, got {period_hours!r}")


def window(
    samples: Iterable[HistorySample],
    period_hours: float,
    now: datetime | None = None,
) -> list[HistorySample]:
    """Samples with timestamp >= now - period_hours, oldest first."""
    _check_period(period_hours)
    since = (now or utcnow()) - timedelta(hours=period_hours)
    kept = [s for s in samples if s.timestamp >= since]
    kept.sort(key=lambda s: s.timestamp)
    return kept


class HistoryWindower:
    def __init__(self, source: HistorySource, timeout_s: float = settings.HISTORY_TIMEOUT_S):
        self.source = source
        self.timeout_s = timeout_s

    def _to_samples(self, parameter_id: str, rows: Iterable[dict[str, Any]]) -> list[HistorySample]:
        samples: list[HistorySample] = []
        skipped = 0
        for row in rows:
            try:
                samples.append(HistorySample(
                    parameter_id=parameter_id,
                    timestamp=row["timestamp"],
                    value=row["value"],
                ))
            except (KeyError, TypeError, ValidationError):
                skipped += 1
        if skipped:
            logger.warning("Skipped %d malformed history rows for parameter %s", skipped, parameter_id)
        return samples

    async def fetch(
        self,
        parameter_id: str,
        period_hours: float,
        now: datetime | None = None,
    ) -> list[HistorySample]:
        """
        Fetch the history window for a parameter.

        Raises:
            ValueError: non-positive period
            FetchTimeout: the history source exceeded its budget
        """
        _check_period(period_hours)
        parameter_id = str(parameter_id)
        rows = await bounded(
            f"history fetch for parameter {parameter_id}",
            self.source.fetch_history(parameter_id, period_hours),
            self.timeout_s,
        )
        return window(self._to_samples(parameter_id, rows), period_hours, now=now)
