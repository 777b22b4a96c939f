import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Union

from config.settings import get_settings
from core.database.models import new_id, utcnow
from core.errors import CatalogError, NotFound, TransientNetwork, ValidationFailure
from core.storage.base import RowStore
from .history import HistoryLedger, chunked
from .importer import ImportRecord
from .product import Product
from .review import PRODUCTS_TABLE, ReviewWorkflow
from .sanitizer import UNPRICED, Price, Priced, price_amount, to_price

logger = logging.getLogger(__name__)


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _checked_price(value) -> Price:
    price = to_price(value)
    if isinstance(price, Priced) and price.amount < 0:
        raise ValidationFailure(f"Price cannot be negative: {value}")
    return price


class CatalogService:
    """Write and read paths of the product catalog.

    Every price goes through the sanitizer here, every non-empty price is
    mirrored into the history ledger, and editing the price of a product
    under review resolves that review (see ``commit_price``).
    """

    def __init__(self, store: RowStore, ledger: Optional[HistoryLedger] = None,
                 review: Optional[ReviewWorkflow] = None,
                 clock: Callable[[], datetime] = utcnow,
                 fetch_timeout: Optional[float] = None,
                 chunk_size: Optional[int] = None):
        settings = get_settings()
        self.store = store
        self.ledger = ledger or HistoryLedger(store, chunk_size)
        self.review = review or ReviewWorkflow(store)
        self.clock = clock
        self.fetch_timeout = fetch_timeout or settings.FETCH_TIMEOUT_SECONDS
        self.chunk_size = chunk_size or settings.BATCH_CHUNK_SIZE

    # ---------- Reads ----------

    async def fetch_products(self) -> List[Product]:
        """Full catalog ordered by name, bounded by the fetch timeout."""
        try:
            rows = await asyncio.wait_for(
                self.store.select(PRODUCTS_TABLE, order_by="name"),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            raise TransientNetwork(
                f"Catalog fetch timed out after {self.fetch_timeout:g}s"
            ) from None
        return [Product.from_row(row) for row in rows]

    async def get_product(self, product_id: str) -> Product:
        rows = await self.store.select(PRODUCTS_TABLE, {"id": product_id})
        if not rows:
            raise NotFound(f"Product {product_id} not found")
        return Product.from_row(rows[0])

    # ---------- Writes ----------

    def _new_row(self, name: str, price) -> dict:
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValidationFailure("Product name is required")
        return {
            "id": new_id(),
            "name": clean_name,
            "price": price_amount(_checked_price(price)),
            "last_updated": self.clock(),
            "is_review_requested": False,
            "review_batch_id": None,
        }

    async def _record_history(self, product_id: str, amount):
        # The ledger is best effort on single edits: the price itself is already saved
        try:
            await self.ledger.record(product_id, amount, self.clock().date())
        except CatalogError:
            logger.exception("History entry for %s could not be written", product_id)

    async def add_product(self, name: str, price: Union[int, float, str, None] = None) -> Product:
        """Create one product; an unparsable price leaves it unpriced."""
        row = self._new_row(name, price)
        stored = await self.store.insert(PRODUCTS_TABLE, [row])
        product = Product.from_row(stored[0])
        if product.is_priced:
            await self._record_history(product.id, product.price)
        logger.info("Added product '%s'", product.name)
        return product

    async def add_batch_products(self, records: Iterable[Union[ImportRecord, dict]]) -> List[Product]:
        """Insert many products in chunks, then their ledger entries.

        A failing chunk aborts the rest and the whole call fails.
        """
        rows = []
        for record in records:
            if isinstance(record, dict):
                name, price = record.get("name"), record.get("price")
            else:
                name, price = record.name, record.price
            rows.append(self._new_row(name, price))
        if not rows:
            raise ValidationFailure("No valid products found in the input")

        stored = []
        for chunk in chunked(rows, self.chunk_size):
            stored.extend(await self.store.insert(PRODUCTS_TABLE, chunk))

        today = self.clock().date()
        await self.ledger.record_many((row["id"], row["price"], today) for row in stored)
        logger.info("Imported %d products", len(stored))
        return [Product.from_row(row) for row in stored]

    async def initialize_data(self, seed_records: Optional[Iterable] = None) -> int:
        """Seed an empty catalog. Returns how many products were created.

        The row count doubles as the probe for a missing table, which
        surfaces as TableMissing to the caller.
        """
        count = await self.store.count(PRODUCTS_TABLE)
        if count > 0:
            return 0
        records = list(seed_records or [])
        if not records:
            return 0
        logger.info("Catalog empty, seeding %d products", len(records))
        seeded = await self.add_batch_products(records)
        return len(seeded)

    async def commit_price(self, product_id: str, price: Union[int, float, str, None]) -> Product:
        """Save a new price for a product.

        Runs three steps in order: the price update, the ledger upsert for
        today, and, when the product was waiting for review, the review
        completion. Nothing after the price update runs if it fails. Blank
        input clears the price; text that is not a number is rejected.
        """
        variant = _checked_price(price)
        if variant is UNPRICED and not _is_blank(price):
            raise ValidationFailure(f"Invalid price: {price!r}")
        amount = price_amount(variant)

        current = await self.get_product(product_id)

        changed = await self.store.update(
            PRODUCTS_TABLE,
            {"id": product_id},
            {"price": amount, "last_updated": self.clock()},
        )
        if not changed:
            raise NotFound(f"Product {product_id} not found")

        if isinstance(variant, Priced):
            await self._record_history(product_id, variant.amount)

        if current.is_review_requested:
            await self.review.complete_review(product_id)

        return await self.get_product(product_id)

    async def delete_products(self, product_ids: Iterable[str]) -> int:
        """Hard delete; ledger entries are kept."""
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            raise ValidationFailure("No products selected")
        deleted = await self.store.delete(PRODUCTS_TABLE, {"id": ids})
        logger.info("Deleted %d products", deleted)
        return deleted
