import asyncio
import logging
from typing import Dict, List, Optional

from core.errors import TransientNetwork
from .base import ChangeEvent, DELETE, INSERT, UPDATE, Row, RowStore

logger = logging.getLogger(__name__)


def diff_rows(table: str, previous: Dict[str, Row], current: Dict[str, Row]) -> List[ChangeEvent]:
    """Change events that turn ``previous`` into ``current`` (rows keyed by id)."""
    events = []
    for row_id, row in current.items():
        old = previous.get(row_id)
        if old is None:
            events.append(ChangeEvent(INSERT, table, after=row))
        elif old != row:
            events.append(ChangeEvent(UPDATE, table, before=old, after=row))
    for row_id, row in previous.items():
        if row_id not in current:
            events.append(ChangeEvent(DELETE, table, before=row))
    return events


class ChangePoller:
    """Publishes changes made by other processes by diffing table snapshots.

    The in-process change feed only sees writes that go through the same
    store object. A poller lets a separate process (the CLI ``watch``
    command, a second API worker) follow the shared database. Do not poll
    a table the same store also writes to, or each change arrives twice.
    """

    def __init__(self, store: RowStore, table: str, interval: float = 2.0):
        self.store = store
        self.table = table
        self.interval = interval
        self._rows: Optional[Dict[str, Row]] = None

    async def _snapshot(self) -> Dict[str, Row]:
        return {row["id"]: row for row in await self.store.select(self.table)}

    async def prime(self):
        self._rows = await self._snapshot()

    async def poll_once(self) -> List[ChangeEvent]:
        if self._rows is None:
            await self.prime()
            return []
        current = await self._snapshot()
        events = diff_rows(self.table, self._rows, current)
        self._rows = current
        if events:
            logger.debug("Polled %d changes on %s", len(events), self.table)
            self.store.publish(events)
        return events

    async def run(self):
        """Poll until cancelled; connectivity errors are retried next round."""
        await self.prime()
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.poll_once()
            except TransientNetwork as e:
                logger.warning("Polling %s failed, retrying: %s", self.table, e)
