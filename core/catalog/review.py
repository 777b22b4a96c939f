import enum
import logging
import random
from dataclasses import dataclass
from typing import Iterable, List, Optional

from core.errors import NotFound, ValidationFailure
from core.storage.base import RowStore
from .product import Product

logger = logging.getLogger(__name__)

PRODUCTS_TABLE = "products"

REVIEW_NOTIFICATION_TITLE = "طلب مراجعة جديد 🔔"


def review_notification_body(product_name: str) -> str:
    return f"تم طلب مراجعة سعر: {product_name}"


class ReviewState(enum.Enum):
    NORMAL = "normal"
    PENDING_REVIEW = "pending_review"


@dataclass(frozen=True)
class ReviewBatch:
    """Outcome of a review request: the batch token and how many rows it flagged."""
    batch_id: str
    count: int


def new_batch_id() -> str:
    return f"BATCH-{random.randint(0, 9999)}"


def is_review_transition(before: Optional[dict], after: Optional[dict]) -> bool:
    """True when a row moved from Normal to PendingReview."""
    if not after or not after.get("is_review_requested"):
        return False
    return not (before or {}).get("is_review_requested")


class ReviewWorkflow:
    """Review-request lifecycle of catalog products.

    Normal -> PendingReview via request_review, back via complete_review.
    The cycle repeats indefinitely; both review columns always change in
    the same write so the batch id is set exactly while a review is pending.
    """

    def __init__(self, store: RowStore):
        self.store = store

    @staticmethod
    def state_of(product: Product) -> ReviewState:
        if product.is_review_requested:
            return ReviewState.PENDING_REVIEW
        return ReviewState.NORMAL

    async def request_review(self, product_ids: Iterable[str], batch_id: Optional[str] = None) -> ReviewBatch:
        """Flag every product for review under one batch id.

        A single storage update covers the whole set; if it fails no product
        changes state. Unknown ids are skipped, so the returned count is
        the number of products actually flagged.
        """
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            raise ValidationFailure("No products selected for review")
        batch_id = batch_id or new_batch_id()
        changed = await self.store.update(
            PRODUCTS_TABLE,
            {"id": ids},
            {"is_review_requested": True, "review_batch_id": batch_id},
        )
        if not changed:
            raise NotFound("None of the selected products exist")
        logger.info("Requested review of %d products (batch %s)", changed, batch_id)
        return ReviewBatch(batch_id, changed)

    async def complete_review(self, product_id: str) -> int:
        """Return a product to Normal, clearing its batch id."""
        changed = await self.store.update(
            PRODUCTS_TABLE,
            {"id": product_id},
            {"is_review_requested": False, "review_batch_id": None},
        )
        if not changed:
            raise NotFound(f"Product {product_id} not found")
        logger.debug("Completed review of %s", product_id)
        return changed

    @staticmethod
    def pending(products: Iterable[Product]) -> List[Product]:
        return [p for p in products if p.is_review_requested]

    @classmethod
    def pending_count(cls, products: Iterable[Product]) -> int:
        return len(cls.pending(products))
