# This file defines the abstract row store every catalog component talks to
# It fixes the contract (CRUD, upsert, change feed) without tying the core to one database

import abc
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Filters = Dict[str, Any]

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
ALL_EVENTS = (INSERT, UPDATE, DELETE)


@dataclass(frozen=True)
class ChangeEvent:
    """A single row change published by the store.

    before is None for inserts, after is None for deletes.
    """
    event_type: str
    table: str
    before: Optional[Row] = None
    after: Optional[Row] = None


class Subscription:
    """A live change stream for one table.

    Iterate it with ``async for`` or call ``get()``; call ``unsubscribe()``
    when done so the store stops delivering to it.
    """

    def __init__(self, store: "RowStore", table: str, event_types: Iterable[str]):
        self.store = store
        self.table = table
        self.event_types = frozenset(event_types)
        self.active = True
        self._queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue()

    def wants(self, event: ChangeEvent) -> bool:
        return self.active and event.table == self.table and event.event_type in self.event_types

    def deliver(self, event: ChangeEvent):
        if self.wants(event):
            self._queue.put_nowait(event)

    async def get(self) -> ChangeEvent:
        return await self._queue.get()

    def drain(self) -> List[ChangeEvent]:
        """Return every event already queued without waiting."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def pending(self) -> int:
        return self._queue.qsize()

    def unsubscribe(self):
        if self.active:
            self.active = False
            self.store.remove_subscription(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        if not self.active:
            raise StopAsyncIteration
        return await self.get()


class RowStore(abc.ABC):
    """Base class for storage backends.

    Tables are addressed by logical name (``products``, ``price_history``,
    ``orders``) and rows are plain dicts. Filters map a column to a value;
    a list, tuple or set value means "column IN values".

    Every operation is a coroutine so the caller's event loop never blocks
    on the database. Backends raise the classes from ``core.errors``.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    @abc.abstractmethod
    async def select(self, table: str, filters: Optional[Filters] = None,
                     order_by: Optional[str] = None, descending: bool = False) -> List[Row]:
        """Return the rows of ``table`` matching ``filters``."""

    @abc.abstractmethod
    async def count(self, table: str) -> int:
        """Count rows; also the probe used to detect an uninitialized table."""

    @abc.abstractmethod
    async def insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        """Insert rows and return them as stored (defaults filled in)."""

    @abc.abstractmethod
    async def update(self, table: str, filters: Filters, patch: Row) -> int:
        """Apply ``patch`` to matching rows; return how many changed."""

    @abc.abstractmethod
    async def delete(self, table: str, filters: Filters) -> int:
        """Delete matching rows; return how many were removed."""

    @abc.abstractmethod
    async def upsert(self, table: str, rows: Sequence[Row], conflict_keys: Sequence[str]) -> List[Row]:
        """Insert rows, overwriting any existing row with the same conflict key values."""

    @abc.abstractmethod
    async def ensure_schema(self):
        """Create missing tables (the setup/repair flow)."""

    def subscribe(self, table: str, event_types: Iterable[str] = ALL_EVENTS) -> Subscription:
        subscription = Subscription(self, table, event_types)
        self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s %s", table, sorted(subscription.event_types))
        return subscription

    def remove_subscription(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug("Unsubscribed from %s", subscription.table)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, events: Iterable[ChangeEvent]):
        """Fan events out to every interested subscription."""
        for event in events:
            for subscription in list(self._subscriptions):
                subscription.deliver(event)
