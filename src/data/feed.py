"""
src/data/feed.py
────────────────
Contracts with the external collaborators, and the change-feed event schema.

Provides:
  - ChangeEvent / parse_change_event() : normalised INSERT/UPDATE/DELETE event
  - SnapshotSource, ChangeFeed, HistorySource, AlertBackend : collaborator protocols
  - InMemoryChangeFeed                 : thread-safe fan-out feed for local runs and tests
  - bounded()                          : await an I/O call under a time budget

Normalisation fails fast: a payload without its identity fields is rejected
with MalformedPayload instead of being guessed at.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.data.models import utcnow
from src.errors import FetchTimeout, MalformedPayload

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class Table(str, Enum):
    EQUIPMENT = "equipment"
    PARAMETERS = "plc_parameters"


class ChangeEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_type: EventType = Field(alias="eventType")
    table: Table
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    received_at: datetime = Field(default_factory=utcnow)

    @property
    def record(self) -> dict[str, Any]:
        """The row the event is about: `old` for DELETE, `new` otherwise."""
        if self.event_type is EventType.DELETE:
            return self.old or {}
        return self.new or {}

    @property
    def entity_id(self) -> str:
        return str(self.record["id"])

    @property
    def equipment_id(self) -> str | None:
        """Owning equipment for parameter events, the entity itself for equipment events."""
        if self.table is Table.EQUIPMENT:
            return self.entity_id
        owner = self.record.get("equipment_id")
        return None if owner is None else str(owner)

    @property
    def key(self) -> tuple[str, str]:
        return self.table.value, self.entity_id


def parse_change_event(payload: ChangeEvent | dict[str, Any]) -> ChangeEvent:
    """Validate a raw change-feed payload into a ChangeEvent."""
    if isinstance(payload, ChangeEvent):
        event = payload
    else:
        if not isinstance(payload, dict):
            raise MalformedPayload("change event is not a mapping", payload)
        try:
            event = ChangeEvent.model_validate(payload)
        except ValidationError as exc:
            raise MalformedPayload(f"invalid change event: {exc.error_count()} error(s)", payload) from exc

    record = event.old if event.event_type is EventType.DELETE else event.new
    if not record:
        side = "old" if event.event_type is EventType.DELETE else "new"
        raise MalformedPayload(f"{event.event_type.value} event without '{side}' record", payload)
    if record.get("id") in (None, ""):
        raise MalformedPayload(f"{event.table.value} record without id", payload)
    if (
        event.table is Table.PARAMETERS
        and event.event_type is EventType.INSERT
        and record.get("equipment_id") in (None, "")
    ):
        raise MalformedPayload("parameter insert without equipment_id", payload)
    return event


# ── Collaborator protocols ────────────────────────────────────────────────────

class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class SnapshotSource(Protocol):
    async def fetch_snapshot(self) -> list[dict[str, Any]]:
        """All equipment records with nested `parameters` lists."""
        ...


class ChangeFeed(Protocol):
    def subscribe(self, callback: Callable[[dict[str, Any]], None]) -> Subscription: ...


class HistorySource(Protocol):
    async def fetch_history(self, parameter_id: str, period_hours: float) -> list[dict[str, Any]]:
        """Ascending `{timestamp, value}` rows for the last `period_hours`."""
        ...


class AlertBackend(Protocol):
    async def acknowledge(self, alert_id: str, at: datetime) -> None: ...


async def bounded(operation: str, call: Awaitable[T], timeout_s: float) -> T:
    """Await `call`, converting an expired budget into FetchTimeout."""
    try:
        return await asyncio.wait_for(call, timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        logger.warning("%s exceeded its %.1fs budget", operation, timeout_s)
        raise FetchTimeout(operation, timeout_s) from exc


# ── In-memory feed ────────────────────────────────────────────────────────────

class _FeedSubscription:
    def __init__(self, feed: InMemoryChangeFeed, callback: Callable[[dict[str, Any]], None]):
        self._feed = feed
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        self._feed._remove(self)


class InMemoryChangeFeed:
    """
    Synchronous fan-out feed. `publish` may be called from any thread; each
    payload is delivered to the subscribers registered at publish time.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subscribers: list[_FeedSubscription] = []
        self.published = 0

    def subscribe(self, callback: Callable[[dict[str, Any]], None]) -> _FeedSubscription:
        sub = _FeedSubscription(self, callback)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def _remove(self, sub: _FeedSubscription) -> None:
        with self._lock:
            sub.active = False
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    def publish(self, payload: dict[str, Any]) -> int:
        """Deliver a payload; returns the number of subscribers reached."""
        with self._lock:
            targets = list(self._subscribers)
            self.published += 1
        delivered = 0
        for sub in targets:
            if sub.active:
                sub.callback(payload)
                delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
