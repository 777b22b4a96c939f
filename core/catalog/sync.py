import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from core.errors import CatalogError
from core.notifications import Notifier, safe_notify
from core.storage.base import ALL_EVENTS, UPDATE, ChangeEvent, Subscription
from .product import Product
from .review import (
    PRODUCTS_TABLE,
    REVIEW_NOTIFICATION_TITLE,
    ReviewWorkflow,
    is_review_transition,
    review_notification_body,
)
from .service import CatalogService

logger = logging.getLogger(__name__)


class CatalogSync:
    """Keeps one in-memory catalog snapshot in step with the store.

    The snapshot is filled by an initial fetch and then replaced wholesale
    after every change notification on the products table. Events that
    queue up while a reload is running are folded into the next reload.
    Catalogs are small, so a full refetch is cheaper to get right than
    patching rows one event at a time.
    """

    def __init__(self, catalog: CatalogService, notifier: Optional[Notifier] = None):
        self.catalog = catalog
        self.notifier = notifier
        self.snapshot: Tuple[Product, ...] = ()
        self.version = 0
        self.last_error: Optional[CatalogError] = None
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None
        self._changed: Optional[asyncio.Condition] = None
        self._listeners: List[Callable[[Tuple[Product, ...]], None]] = []

    @property
    def running(self) -> bool:
        return self._subscription is not None

    @property
    def pending_count(self) -> int:
        return ReviewWorkflow.pending_count(self.snapshot)

    def add_listener(self, callback: Callable[[Tuple[Product, ...]], None]):
        """Call ``callback(snapshot)`` after every successful reload."""
        self._listeners.append(callback)

    async def start(self):
        """Follow the change feed, then load the catalog.

        Subscribing first means a write that lands during the initial
        fetch still queues an event. Errors from the initial load
        propagate so the session root can classify them; nothing is left
        subscribed in that case.
        """
        if self.running:
            return
        self._changed = asyncio.Condition()
        self._subscription = self.catalog.store.subscribe(PRODUCTS_TABLE, ALL_EVENTS)
        try:
            await self.reload(raise_errors=True)
        except Exception:
            self._subscription.unsubscribe()
            self._subscription = None
            raise
        self._task = asyncio.create_task(self._listen(), name="catalog-sync")
        logger.debug("Catalog sync started with %d products", len(self.snapshot))

    async def stop(self):
        """Unsubscribe and stop listening. Safe to call more than once."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Catalog sync listener had stopped with an error")
            self._task = None
        logger.debug("Catalog sync stopped")

    async def reload(self, raise_errors: bool = False):
        """Refetch the whole catalog and swap the snapshot."""
        try:
            products = await self.catalog.fetch_products()
        except CatalogError as e:
            self.last_error = e
            if raise_errors:
                raise
            logger.error("Catalog reload failed: %s", e)
            return
        self.snapshot = tuple(products)
        self.last_error = None
        self.version += 1
        for callback in list(self._listeners):
            try:
                callback(self.snapshot)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Catalog listener %r failed", callback)
        if self._changed is not None:
            async with self._changed:
                self._changed.notify_all()

    def handle_event(self, event: ChangeEvent):
        """Side effects of a single event, before the reload."""
        if event.event_type == UPDATE and is_review_transition(event.before, event.after):
            safe_notify(
                self.notifier,
                REVIEW_NOTIFICATION_TITLE,
                review_notification_body(event.after.get("name", "")),
            )

    async def _listen(self):
        subscription = self._subscription
        while subscription is not None and subscription.active:
            event = await subscription.get()
            try:
                for queued in [event] + subscription.drain():
                    self.handle_event(queued)
                await self.reload()
            except Exception:  # pylint: disable=broad-exception-caught
                # Keep following the feed; the next event reloads again
                logger.exception("Catalog sync failed to apply a change")

    async def wait_for_version(self, version: int, timeout: float = 5.0):
        """Wait until at least ``version`` reloads have completed."""
        if self._changed is None:
            raise RuntimeError("Catalog sync has not been started")

        async def _wait():
            async with self._changed:
                await self._changed.wait_for(lambda: self.version >= version)

        await asyncio.wait_for(_wait(), timeout=timeout)
