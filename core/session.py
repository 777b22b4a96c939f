import enum
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from core.catalog.history import HistoryLedger
from core.catalog.product import Product
from core.catalog.review import ReviewBatch, ReviewWorkflow
from core.catalog.service import CatalogService
from core.catalog.sync import CatalogSync
from core.database.models import utcnow
from core.errors import CatalogError, NotFound, TableMissing, ValidationFailure
from core.notifications import Notifier
from core.orders.cart import DraftOrder
from core.orders.repository import OrderRepository, SavedOrder
from core.storage.base import RowStore

logger = logging.getLogger(__name__)


class LoadError(enum.Enum):
    TABLE_MISSING = "TABLE_MISSING"


class CatalogSession:
    """Everything one viewing session owns.

    Holds the synced catalog snapshot and the draft order, and wires the
    catalog, ledger, review and order components to one store. ``start``
    loads the catalog and subscribes to changes; ``close`` tears the
    subscription down. Use it as an async context manager::

        async with CatalogSession(store, notifier) as session:
            await session.commit_price(product_id, "5,500")
    """

    def __init__(self, store: RowStore, notifier: Optional[Notifier] = None,
                 clock: Callable[[], datetime] = utcnow,
                 seed_records: Optional[Iterable] = None,
                 fetch_timeout: Optional[float] = None,
                 chunk_size: Optional[int] = None):
        self.store = store
        self.ledger = HistoryLedger(store, chunk_size)
        self.review = ReviewWorkflow(store)
        self.catalog = CatalogService(
            store, self.ledger, self.review, clock=clock,
            fetch_timeout=fetch_timeout, chunk_size=chunk_size,
        )
        self.sync = CatalogSync(self.catalog, notifier)
        self.orders = OrderRepository(store, clock=clock)
        self.draft = DraftOrder()
        self.seed_records = list(seed_records or [])
        self.load_error: Optional[Union[LoadError, str]] = None

    @property
    def products(self):
        return self.sync.snapshot

    @property
    def ready(self) -> bool:
        return self.sync.running and self.load_error is None

    async def start(self) -> bool:
        """Seed if needed, load the catalog and follow changes.

        Load failures are classified instead of raised: a missing table
        sets ``load_error`` to ``LoadError.TABLE_MISSING`` (run ``repair``),
        anything else stores the error message.
        """
        self.load_error = None
        try:
            await self.catalog.initialize_data(self.seed_records)
            await self.sync.start()
        except TableMissing as e:
            logger.warning("Catalog storage is not set up: %s", e)
            self.load_error = LoadError.TABLE_MISSING
            return False
        except CatalogError as e:
            logger.error("Could not load the catalog: %s", e)
            self.load_error = str(e) or "Unexpected error"
            return False
        return True

    async def repair(self) -> bool:
        """Create the missing tables, then try loading again."""
        await self.store.ensure_schema()
        return await self.start()

    async def close(self):
        await self.sync.stop()

    async def __aenter__(self) -> "CatalogSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ---------- Catalog ----------

    def find_product(self, product_id: str) -> Product:
        for product in self.products:
            if product.id == product_id:
                return product
        raise NotFound(f"Product {product_id} not found")

    async def commit_price(self, product_id: str, price) -> Product:
        return await self.catalog.commit_price(product_id, price)

    async def request_review(self, product_ids: Iterable[str], batch_id: Optional[str] = None) -> ReviewBatch:
        return await self.review.request_review(product_ids, batch_id)

    async def complete_review(self, product_id: str) -> int:
        return await self.review.complete_review(product_id)

    async def delete_products(self, product_ids: Iterable[str], confirmed: bool = False) -> int:
        if not confirmed:
            raise ValidationFailure("Deleting products needs an explicit confirmation")
        return await self.catalog.delete_products(product_ids)

    # ---------- Orders ----------

    def add_to_cart(self, product_id: str):
        return self.draft.add_product(self.find_product(product_id))

    async def save_order(self) -> SavedOrder:
        return await self.orders.save_draft(self.draft)

    async def load_order(self, order_id: str) -> SavedOrder:
        order = await self.orders.get(order_id)
        self.orders.load_into(self.draft, order)
        return order

    async def delete_order(self, order_id: str, confirmed: bool = False) -> int:
        if not confirmed:
            raise ValidationFailure("Deleting an order needs an explicit confirmation")
        return await self.orders.delete(order_id)
