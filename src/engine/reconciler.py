"""
src/engine/reconciler.py
────────────────────────
Merges the bulk snapshot and the incremental change feed into the State Store.

Startup sequence:
  1. Subscribe to the change feed and buffer every event (BUFFERING)
  2. Fetch the snapshot under its time budget; apply it as the baseline
  3. Replay buffered events in arrival order on top of the baseline.
     A parameter event whose equipment is not known yet waits in a pending
     chain together with every later event for that parameter. The chain is
     replayed in order once the equipment is inserted; whatever is still
     pending after the pass is discarded as UnknownOwner.
  4. Switch to LIVE: new events apply immediately

If the snapshot fails the baseline is empty, the buffer is still replayed and
the store is flagged degraded. Steps 2–4 run under the reconciler lock, so an
event delivered from another thread during replay waits and lands after it.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from config.settings import settings
from src.data.feed import (
    ChangeEvent,
    ChangeFeed,
    EventType,
    SnapshotSource,
    Subscription,
    Table,
    bounded,
    parse_change_event,
)
from src.data.models import utcnow
from src.data.store import StateStore
from src.errors import MalformedPayload, UnknownOwner

logger = logging.getLogger(__name__)


class SyncMode(str, Enum):
    IDLE = "idle"
    BUFFERING = "buffering"
    LIVE = "live"
    STOPPED = "stopped"


class _Outcome(Enum):
    APPLIED = "applied"
    NOOP = "noop"
    ORPHAN = "orphan"


@dataclass(frozen=True)
class BufferedEvent:
    entity_type: str
    entity_id: str
    received_at: datetime
    event: ChangeEvent

    @property
    def key(self) -> tuple[str, str]:
        return self.entity_type, self.entity_id


@dataclass(frozen=True)
class SyncHealth:
    mode: SyncMode
    store_degraded: bool
    malformed_events: int
    unknown_owner_discards: int
    applied_events: int
    buffered_events: int
    last_snapshot_at: datetime | None
    last_error: str | None


class ChangeReconciler:
    def __init__(
        self,
        store: StateStore,
        snapshot_source: SnapshotSource,
        feed: ChangeFeed,
        fetch_timeout_s: float = settings.SNAPSHOT_TIMEOUT_S,
    ):
        self.store = store
        self.snapshot_source = snapshot_source
        self.feed = feed
        self.fetch_timeout_s = fetch_timeout_s

        self._lock = threading.RLock()
        self._mode = SyncMode.IDLE
        self._buffer: list[BufferedEvent] = []
        self._subscription: Subscription | None = None

        self._store_degraded = False
        self._malformed = 0
        self._unknown_owner = 0
        self._applied = 0
        self._last_snapshot_at: datetime | None = None
        self._last_error: str | None = None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> SyncHealth:
        """Subscribe, load the baseline, replay, and go live."""
        with self._lock:
            if self._mode is not SyncMode.IDLE:
                raise RuntimeError(f"reconciler already {self._mode.value}")
            self._mode = SyncMode.BUFFERING
            self._buffer = []
            self._subscription = self.feed.subscribe(self.on_event)
        logger.info("Change feed subscribed; buffering until the snapshot arrives")

        try:
            records = await self._fetch_snapshot()
        except asyncio.CancelledError:
            logger.info("Startup cancelled during snapshot fetch; nothing applied")
            self.stop()
            raise

        self._finish_sync(records, initial=True)
        return self.health

    async def refresh(self) -> bool:
        """
        Re-issue the snapshot while live. Events arriving meanwhile are
        buffered and replayed on top of the new baseline. On failure the
        current state is kept and False is returned.
        """
        with self._lock:
            if self._mode is not SyncMode.LIVE:
                raise RuntimeError(f"cannot refresh while {self._mode.value}")
            self._mode = SyncMode.BUFFERING
            self._buffer = []

        try:
            records = await self._fetch_snapshot()
        except asyncio.CancelledError:
            # Keep the events that arrived; just skip the new baseline
            self._finish_sync(None, initial=False)
            raise

        return self._finish_sync(records, initial=False)

    def stop(self) -> None:
        """Stop event delivery. The store is left exactly as it is."""
        with self._lock:
            if self._subscription is not None:
                self._subscription.unsubscribe()
                self._subscription = None
            dropped = len(self._buffer)
            self._buffer = []
            self._mode = SyncMode.STOPPED
        logger.info("Change feed unsubscribed (%d buffered events dropped)", dropped)

    async def _fetch_snapshot(self) -> list[dict[str, Any]] | None:
        try:
            records = await bounded("snapshot fetch", self.snapshot_source.fetch_snapshot(), self.fetch_timeout_s)
        except Exception as exc:  # any collaborator failure degrades rather than crashes
            self._last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Snapshot fetch failed: %s", self._last_error)
            return None
        if not isinstance(records, list):
            self._last_error = "snapshot fetch returned a non-list payload"
            logger.warning(self._last_error)
            return None
        return records

    def _finish_sync(self, records: list[dict[str, Any]] | None, initial: bool) -> bool:
        with self._lock:
            if self._mode is not SyncMode.BUFFERING:
                # stop() ran while the fetch was in flight
                return False

            if records is not None:
                skipped = self.store.replace_all(records)
                self._malformed += len(skipped)
                self._store_degraded = False
                self._last_snapshot_at = utcnow()
                self._last_error = None
                logger.info("Snapshot baseline applied: %d equipment (%d skipped)",
                            len(records) - len(skipped), len(skipped))
            elif initial:
                self._store_degraded = True
                logger.warning("Store degraded: snapshot unavailable, running on live events only (%s)", self._last_error)

            buffered, self._buffer = self._buffer, []
            self._replay(buffered)
            self._mode = SyncMode.LIVE
        logger.info("Reconciler live (%d buffered events replayed)", len(buffered))
        return records is not None

    # ── Event intake ──────────────────────────────────────────────────────────

    def on_event(self, payload: ChangeEvent | dict[str, Any]) -> None:
        """Change-feed callback. Never raises."""
        try:
            event = parse_change_event(payload)
        except MalformedPayload as exc:
            with self._lock:
                self._malformed += 1
            logger.warning("Dropping malformed change event: %s", exc)
            return

        with self._lock:
            if self._mode is SyncMode.BUFFERING:
                self._buffer.append(BufferedEvent(
                    entity_type=event.table.value,
                    entity_id=event.entity_id,
                    received_at=event.received_at,
                    event=event,
                ))
            elif self._mode is SyncMode.LIVE:
                outcome = self._apply_safely(event)
                if outcome is _Outcome.ORPHAN:
                    self._discard_orphan(event)
            else:
                logger.debug("Ignoring %s event while %s", event.event_type.value, self._mode.value)

    # ── Application (lock held) ───────────────────────────────────────────────

    def _apply(self, event: ChangeEvent) -> _Outcome:
        record = event.record
        if event.table is Table.EQUIPMENT:
            if event.event_type is EventType.DELETE:
                removed = self.store.remove_equipment(event.entity_id)
                return _Outcome.APPLIED if removed else _Outcome.NOOP
            self.store.upsert_equipment(record)
            return _Outcome.APPLIED

        if event.event_type is EventType.DELETE:
            removed = self.store.remove_parameter(event.entity_id)
            return _Outcome.APPLIED if removed else _Outcome.NOOP
        if self.store.upsert_parameter(record) is None:
            return _Outcome.ORPHAN
        return _Outcome.APPLIED

    def _apply_safely(self, event: ChangeEvent) -> _Outcome:
        try:
            outcome = self._apply(event)
        except MalformedPayload as exc:
            self._malformed += 1
            logger.warning("Skipping %s %s event: %s", event.table.value, event.event_type.value, exc)
            return _Outcome.NOOP
        if outcome is _Outcome.APPLIED:
            self._applied += 1
            logger.debug("Applied %s %s %s", event.event_type.value, event.table.value, event.entity_id)
        return outcome

    def _discard_orphan(self, event: ChangeEvent) -> None:
        self._unknown_owner += 1
        err = UnknownOwner(event.entity_id, event.equipment_id or "?")
        logger.warning("Discarding parameter event: %s", err)

    def _replay(self, buffered: list[BufferedEvent]) -> None:
        # Orphaned parameters, each with every later event for it in arrival order
        pending: dict[tuple[str, str], list[BufferedEvent]] = {}
        for item in buffered:
            chain = pending.get(item.key)
            if chain is not None:
                chain.append(item)
                continue

            outcome = self._apply_safely(item.event)
            if outcome is _Outcome.ORPHAN:
                pending[item.key] = [item]
            elif (
                outcome is _Outcome.APPLIED
                and item.event.table is Table.EQUIPMENT
                and item.event.event_type is not EventType.DELETE
            ):
                self._retry_pending(pending, item.entity_id)

        for chain in pending.values():
            for item in chain:
                self._discard_orphan(item.event)

    def _retry_pending(self, pending: dict[tuple[str, str], list[BufferedEvent]], equipment_id: str) -> None:
        """Drain every chain whose head waits on `equipment_id`, stopping at the next orphan."""
        waiting = [key for key, chain in pending.items() if chain[0].event.equipment_id == equipment_id]
        for key in waiting:
            chain = pending.pop(key)
            while chain:
                if self._apply_safely(chain[0].event) is _Outcome.ORPHAN:
                    # Re-parented to another unknown equipment; keep waiting
                    pending[key] = chain
                    break
                chain.pop(0)

    # ── Status ────────────────────────────────────────────────────────────────

    @property
    def mode(self) -> SyncMode:
        with self._lock:
            return self._mode

    @property
    def store_degraded(self) -> bool:
        with self._lock:
            return self._store_degraded

    @property
    def health(self) -> SyncHealth:
        with self._lock:
            return SyncHealth(
                mode=self._mode,
                store_degraded=self._store_degraded,
                malformed_events=self._malformed,
                unknown_owner_discards=self._unknown_owner,
                applied_events=self._applied,
                buffered_events=len(self._buffer),
                last_snapshot_at=self._last_snapshot_at,
                last_error=self._last_error,
            )
