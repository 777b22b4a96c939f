"""Price normalization.

Every path that writes a price (manual add, bulk import, seeding, edits)
goes through ``sanitize_price`` so the catalog only ever stores a finite
number or NULL.
"""

import math
import re
from dataclasses import dataclass
from numbers import Number
from typing import Any, Optional, Union

# Plain decimal literal: optional sign, digits with at most one point, optional exponent
_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


def sanitize_price(value: Any) -> Optional[Union[int, float]]:
    """Normalize user or import supplied price input.

    Returns the number, or None when the input is absent, empty or does
    not parse. Never raises.

    >>> sanitize_price("31,000")
    31000.0
    >>> sanitize_price("abc") is None
    True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Number):
        try:
            return value if math.isfinite(value) else None
        except TypeError:
            # complex and friends are not prices
            return None
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned or not _NUMBER_RE.match(cleaned):
            return None
        number = float(cleaned)
        return number if math.isfinite(number) else None
    return None


@dataclass(frozen=True)
class Priced:
    amount: Union[int, float]


class _Unpriced:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNPRICED"

    def __bool__(self):
        return False


UNPRICED = _Unpriced()

Price = Union[Priced, _Unpriced]


def to_price(value: Any) -> Price:
    """Build the tagged price variant from untyped input."""
    amount = sanitize_price(value)
    return UNPRICED if amount is None else Priced(amount)


def price_amount(price: Price) -> Optional[Union[int, float]]:
    """Column value for a price variant (None when unpriced)."""
    return price.amount if isinstance(price, Priced) else None
