from numbers import Integral
from typing import Any, List, Optional

from core.catalog.product import Product
from core.catalog.sanitizer import Priced, sanitize_price
from core.errors import NotFound, ValidationFailure
from .pricing import CartItem, OrderTotals, Number, build_receipt, compute_order_totals


def _margin(value: Any) -> Number:
    margin = sanitize_price(value)
    if margin is None:
        raise ValidationFailure(f"Invalid margin: {value!r}")
    return margin


class DraftOrder:
    """The unsaved cart plus its pricing settings.

    Purely local: nothing here talks to storage, so cart edits never fail
    because of the backend. ``editing_id`` points at the saved order being
    edited; while it is set, saving updates that order instead of creating
    a new one.
    """

    def __init__(self):
        self.items: List[CartItem] = []
        self.global_margin: Number = 0
        self.delivery_cost: Any = 0
        self.name: str = ""
        self.editing_id: Optional[str] = None

    def __len__(self):
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def find(self, product_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.product_id == product_id), None)

    def _get(self, product_id: str) -> CartItem:
        item = self.find(product_id)
        if item is None:
            raise NotFound(f"Product {product_id} is not in the cart")
        return item

    def add_product(self, product: Product) -> CartItem:
        """Add one unit of a catalog product; repeats bump the quantity."""
        price = product.price_variant
        if not isinstance(price, Priced):
            raise ValidationFailure(f"'{product.name}' has no price and cannot be ordered")
        existing = self.find(product.id)
        if existing is not None:
            existing.quantity += 1
            return existing
        item = CartItem(product_id=product.id, name=product.name, original_price=price.amount)
        self.items.append(item)
        return item

    def update_quantity(self, product_id: str, delta: int) -> CartItem:
        item = self._get(product_id)
        item.quantity = max(1, item.quantity + delta)
        return item

    def set_quantity(self, product_id: str, quantity: int) -> CartItem:
        if isinstance(quantity, bool) or not isinstance(quantity, Integral):
            raise ValidationFailure(f"Quantity must be a whole number: {quantity!r}")
        if quantity < 1:
            raise ValidationFailure("Quantity must be at least 1")
        item = self._get(product_id)
        item.quantity = int(quantity)
        return item

    def set_item_margin(self, product_id: str, percent: Any) -> CartItem:
        """Override the margin of one line; None goes back to the global margin."""
        item = self._get(product_id)
        item.item_profit_percent = None if percent is None else _margin(percent)
        return item

    def set_global_margin(self, percent: Any):
        self.global_margin = _margin(percent)

    def remove(self, product_id: str):
        self.items = [item for item in self.items if item.product_id != product_id]

    def clear(self):
        """Start a fresh cart; later saves insert a new order.

        The global margin is kept, it is a standing preference of the user.
        """
        self.items = []
        self.delivery_cost = 0
        self.name = ""
        self.editing_id = None

    def totals(self) -> OrderTotals:
        return compute_order_totals(self.items, self.global_margin, self.delivery_cost)

    def receipt(self) -> str:
        return build_receipt(self.name, self.items, self.global_margin, self.totals())
