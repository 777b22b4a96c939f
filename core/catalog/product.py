from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from core.database.models import utcnow
from .sanitizer import Price, to_price

RECENT_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class Product:
    """Read-side view of a catalog row."""
    id: str
    name: str
    price: Optional[Union[int, float]] = None
    last_updated: Optional[datetime] = None
    is_review_requested: bool = False
    review_batch_id: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Product":
        return cls(
            id=row["id"],
            name=row["name"],
            price=row.get("price"),
            last_updated=row.get("last_updated"),
            is_review_requested=bool(row.get("is_review_requested")),
            review_batch_id=row.get("review_batch_id"),
        )

    @property
    def price_variant(self) -> Price:
        return to_price(self.price)

    @property
    def is_priced(self) -> bool:
        return self.price is not None

    def is_recently_updated(self, now: Optional[datetime] = None) -> bool:
        """True when the price changed within the last 24 hours."""
        if self.last_updated is None:
            return False
        now = now or utcnow()
        return abs(now - self.last_updated) < RECENT_WINDOW


def filter_products(products, search: str = "", pending_only: bool = False):
    """Substring search on the name, optionally limited to pending reviews."""
    return [
        p for p in products
        if search in p.name and (p.is_review_requested or not pending_only)
    ]
