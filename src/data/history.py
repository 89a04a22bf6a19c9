"""
src/data/history.py
───────────────────
Append-only HistorySample series backed by SQLite.

Provides:
  - append()          : record new samples (never updated afterwards)
  - get_history()     : samples for a parameter over the last `hours` hours (DataFrame)
  - fetch_history()   : async HistorySource entry point used by the windower
  - count()           : number of stored samples, optionally per parameter

Thread safety: check_same_thread=False + an instance-level lock.
"""
from __future__ import annotations

import asyncio
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

import pandas as pd

from config.settings import settings
from src.data.models import HistorySample, utcnow

_CREATE_HISTORY = """
CREATE TABLE IF NOT EXISTS parameter_history (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    parameter_id  TEXT NOT NULL,
    timestamp     TEXT NOT NULL,
    value         REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_history_param_ts ON parameter_history (parameter_id, timestamp);
"""


def _iso(ts: datetime) -> str:
    # Fixed-width UTC text so lexical order matches chronological order
    return ts.isoformat(timespec="microseconds")


class HistoryStore:
    def __init__(self, path: str | None = None):
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(path or settings.HISTORY_DB_PATH, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock, self._conn:
            self._conn.executescript(_CREATE_HISTORY)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def append(self, samples: Iterable[HistorySample]) -> int:
        rows = [(s.parameter_id, _iso(s.timestamp), s.value) for s in samples]
        if not rows:
            return 0
        with self._lock, self._conn:
            self._conn.executemany(
                "INSERT INTO parameter_history (parameter_id, timestamp, value) VALUES (?,?,?)",
                rows,
            )
        return len(rows)

    def get_history(
        self,
        parameter_id: str,
        hours: float,
        now: datetime | None = None,
    ) -> pd.DataFrame:
        """Fetch samples for a parameter over the last `hours` hours, oldest first."""
        since = _iso((now or utcnow()) - timedelta(hours=hours))
        with self._lock:
            df = pd.read_sql_query(
                """SELECT parameter_id, timestamp, value FROM parameter_history
                   WHERE parameter_id = ? AND timestamp >= ?
                   ORDER BY timestamp ASC, id ASC""",
                self._conn,
                params=(str(parameter_id), since),
            )
        if not df.empty:
            df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True, format="ISO8601")
        return df

    async def fetch_history(self, parameter_id: str, period_hours: float) -> list[dict[str, Any]]:
        df = await asyncio.to_thread(self.get_history, parameter_id, period_hours)
        return [
            {"timestamp": row.timestamp.to_pydatetime(), "value": float(row.value)}
            for row in df.itertuples(index=False)
        ]

    def count(self, parameter_id: str | None = None) -> int:
        with self._lock:
            if parameter_id is None:
                return self._conn.execute("SELECT COUNT(*) FROM parameter_history").fetchone()[0]
            return self._conn.execute(
                "SELECT COUNT(*) FROM parameter_history WHERE parameter_id = ?",
                (str(parameter_id),),
            ).fetchone()[0]
