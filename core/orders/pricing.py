"""Order arithmetic.

Totals are kept at full precision everywhere; ``round_amount`` and
``format_amount`` are for the moment a value is shown to someone.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from core.catalog.sanitizer import sanitize_price

Number = Union[int, float]

DEFAULT_ORDER_TITLE = "بدون رقم"
CURRENCY = "جنيه"
GRAND_TOTAL_CURRENCY = "جنية"


@dataclass
class CartItem:
    """One cart line.

    name and original_price are copied from the catalog when the line is
    created and never follow later price edits.
    """
    product_id: str
    name: str
    original_price: Number
    quantity: int = 1
    item_profit_percent: Optional[Number] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "original_price": self.original_price,
            "quantity": self.quantity,
            "item_profit_percent": self.item_profit_percent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartItem":
        return cls(
            product_id=data["product_id"],
            name=data["name"],
            original_price=data["original_price"],
            quantity=int(data.get("quantity", 1)),
            item_profit_percent=data.get("item_profit_percent"),
        )


@dataclass(frozen=True)
class OrderTotals:
    sub_total: float = 0.0
    delivery: float = 0.0
    grand_total: float = 0.0


def effective_margin(item: CartItem, global_margin: Number) -> Number:
    """The item's own margin when set, otherwise the order's."""
    if item.item_profit_percent is not None:
        return item.item_profit_percent
    return global_margin


def compute_unit_price(item: CartItem, global_margin: Number) -> float:
    return item.original_price * (1 + effective_margin(item, global_margin) / 100)


def compute_item_total(item: CartItem, global_margin: Number) -> float:
    return compute_unit_price(item, global_margin) * item.quantity


def coerce_delivery(delivery_cost: Any) -> Number:
    """Delivery as a non-negative number; anything else counts as 0."""
    amount = sanitize_price(delivery_cost)
    if amount is None or amount < 0:
        return 0
    return amount


def compute_order_totals(items: Iterable[CartItem], global_margin: Number,
                         delivery_cost: Any = 0) -> OrderTotals:
    sub_total = sum((compute_item_total(item, global_margin) for item in items), 0.0)
    delivery = coerce_delivery(delivery_cost)
    return OrderTotals(sub_total=sub_total, delivery=delivery, grand_total=sub_total + delivery)


def round_amount(value: Number) -> int:
    """Round half up to a whole currency unit."""
    return int(math.floor(value + 0.5))


def format_amount(value: Number) -> str:
    return f"{round_amount(value):,}"


def build_receipt(order_name: Optional[str], items: Sequence[CartItem],
                  global_margin: Number, totals: OrderTotals) -> str:
    """Customer-facing receipt text, one line per cart item in cart order."""
    lines: List[str] = [
        "✅ تم استلام طلبك",
        f"رقم الطلب: {order_name or DEFAULT_ORDER_TITLE}",
        "",
        "المنتجات:",
    ]
    for item in items:
        item_total = compute_item_total(item, global_margin)
        lines.append(f"{item.name} × {item.quantity} = {format_amount(item_total)}")

    lines.append("")
    lines.append(f"💰 الإجمالي: {format_amount(totals.sub_total)} {CURRENCY}")
    if totals.delivery > 0:
        lines.append(f"🚚 التوصيل: {format_amount(totals.delivery)} {CURRENCY}")
    lines.append(f"الاجمالي الكلي: {format_amount(totals.grand_total)} {GRAND_TOTAL_CURRENCY}")
    lines.append("📦 التسليم اليوم مساءً إن شاء الله")
    lines.append("")
    lines.append("شكرًا لثقتك 🌸")
    return "\n".join(lines)
