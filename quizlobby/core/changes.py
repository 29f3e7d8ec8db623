"""In-process row change notifications.

The store publishes one event per committed insert/update. Subscribers pick a
table and an equality filter on one column and receive matching events on a
bounded queue. Delivery is best-effort: a full queue drops the event, and
nothing is replayed for late subscribers. Anything that must not be missed has
to be re-read from the store.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from quizlobby.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    op: str  # "INSERT" | "UPDATE"
    row: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {"table": self.table, "op": self.op, "row": self.row}


class Subscription:
    """One filtered listener on the feed. Iterate it, then `close()` it."""

    def __init__(
        self,
        feed: "ChangeFeed",
        *,
        table: str,
        column: str,
        value: Any,
        maxsize: int = 100,
    ) -> None:
        self._feed = feed
        self.table = table
        self.column = column
        self.value = value
        self._queue: asyncio.Queue[Optional[ChangeEvent]] = asyncio.Queue(maxsize)
        self.closed = False
        self.dropped = 0

    def matches(self, event: ChangeEvent) -> bool:
        return event.table == self.table and event.row.get(self.column) == self.value

    def _offer(self, event: ChangeEvent) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    async def get(self) -> Optional[ChangeEvent]:
        """Next event, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)
        # Wake a pending reader
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class ChangeFeed:
    def __init__(self, *, queue_size: int = 100) -> None:
        self._subs: list[Subscription] = []
        self._queue_size = queue_size

    def subscribe(self, table: str, column: str, value: Any) -> Subscription:
        sub = Subscription(
            self, table=table, column=column, value=value, maxsize=self._queue_size
        )
        self._subs.append(sub)
        return sub

    def publish(self, event: ChangeEvent) -> None:
        for sub in list(self._subs):
            if sub.matches(event):
                sub._offer(event)

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subs:
            self._subs.remove(sub)

    def count(self) -> int:
        return len(self._subs)
