import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from core.database.models import new_id, utcnow
from core.errors import NotFound, ValidationFailure
from core.storage.base import RowStore
from .cart import DraftOrder
from .pricing import CartItem, Number

logger = logging.getLogger(__name__)

ORDERS_TABLE = "orders"


def default_order_name(now: datetime) -> str:
    return f"طلب {now:%Y/%m/%d} - {now:%H:%M}"


@dataclass
class SavedOrder:
    """A persisted order snapshot (id is None until first saved)."""
    name: str
    items: List[CartItem] = field(default_factory=list)
    profit_margin: Number = 0
    delivery_cost: Number = 0
    total_price: float = 0.0
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "SavedOrder":
        return cls(
            id=row["id"],
            name=row["name"],
            items=[CartItem.from_dict(item) for item in row.get("items") or []],
            profit_margin=row.get("profit_margin") or 0,
            delivery_cost=row.get("delivery_cost") or 0,
            total_price=row.get("total_price") or 0,
            created_at=row.get("created_at"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "items": [item.to_dict() for item in self.items],
            "profit_margin": self.profit_margin,
            "delivery_cost": self.delivery_cost,
            "total_price": self.total_price,
        }


def _row_patch(fields: Dict[str, Any]) -> Dict[str, Any]:
    patch = dict(fields)
    if "items" in patch:
        patch["items"] = [
            item.to_dict() if isinstance(item, CartItem) else dict(item) for item in patch["items"]
        ]
    patch.pop("id", None)
    patch.pop("created_at", None)
    return patch


class OrderRepository:
    """Saved orders: insert, update, delete, list newest first."""

    def __init__(self, store: RowStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def save(self, order: SavedOrder) -> SavedOrder:
        row = order.to_row()
        row["id"] = new_id()
        row["created_at"] = self.clock()
        stored = await self.store.insert(ORDERS_TABLE, [row])
        logger.info("Saved order '%s'", order.name)
        return SavedOrder.from_row(stored[0])

    async def update(self, order_id: str, fields: Dict[str, Any]) -> int:
        changed = await self.store.update(ORDERS_TABLE, {"id": order_id}, _row_patch(fields))
        if not changed:
            raise NotFound(f"Order {order_id} not found")
        logger.info("Updated order %s", order_id)
        return changed

    async def delete(self, order_id: str) -> int:
        deleted = await self.store.delete(ORDERS_TABLE, {"id": order_id})
        if not deleted:
            raise NotFound(f"Order {order_id} not found")
        logger.info("Deleted order %s", order_id)
        return deleted

    async def get(self, order_id: str) -> SavedOrder:
        rows = await self.store.select(ORDERS_TABLE, {"id": order_id})
        if not rows:
            raise NotFound(f"Order {order_id} not found")
        return SavedOrder.from_row(rows[0])

    async def list(self) -> List[SavedOrder]:
        rows = await self.store.select(ORDERS_TABLE, order_by="created_at", descending=True)
        return [SavedOrder.from_row(row) for row in rows]

    async def save_draft(self, draft: DraftOrder) -> SavedOrder:
        """Persist the draft, then reset it for the next order.

        Updates the order the draft was loaded from, or inserts a new one.
        On failure the draft is left untouched.
        """
        if draft.is_empty:
            raise ValidationFailure("Cannot save an empty order")

        totals = draft.totals()
        order = SavedOrder(
            name=draft.name or default_order_name(self.clock()),
            items=copy.deepcopy(draft.items),
            profit_margin=draft.global_margin,
            delivery_cost=totals.delivery,
            total_price=totals.grand_total,
        )

        if draft.editing_id:
            await self.update(draft.editing_id, order.to_row())
            saved = await self.get(draft.editing_id)
        else:
            saved = await self.save(order)

        draft.clear()
        return saved

    @staticmethod
    def load_into(draft: DraftOrder, order: SavedOrder):
        """Replace the whole draft with a saved order for editing."""
        draft.items = copy.deepcopy(order.items)
        draft.global_margin = order.profit_margin or 0
        draft.delivery_cost = order.delivery_cost or 0
        draft.name = order.name
        draft.editing_id = order.id
