# This file defines the database schema for the price book using SQLAlchemy's Object Relational Mapper (ORM)
# It holds the catalog (products), the daily price ledger and saved orders

from sqlalchemy import Column, String, Float, DateTime, Date, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base
import uuid
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


# Create a base class for all ORM models
Base = declarative_base()


class Product(Base):
    """A catalog row: a named item with an optional current price.

    The review columns always move together: review_batch_id is set exactly
    when is_review_requested is true.
    """
    __tablename__ = "products"

    # UUID strings keep ids opaque and stable across databases
    id = Column(String(36), primary_key=True, default=new_id)

    # Indexed because the catalog is always listed ordered by name
    name = Column(String(255), nullable=False, index=True)

    # NULL means "unpriced"
    price = Column(Float, nullable=True)

    # Timestamp of the last price mutation
    last_updated = Column(DateTime, default=utcnow)

    is_review_requested = Column(Boolean, nullable=False, default=False, index=True)
    review_batch_id = Column(String(64), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "last_updated": self.last_updated,
            "is_review_requested": bool(self.is_review_requested),
            "review_batch_id": self.review_batch_id,
        }


class PriceHistory(Base):
    """One observed price per product per calendar day.

    There is deliberately no foreign key to products: ledger rows outlive a
    deleted product and are read back with a "deleted product" fallback.
    """
    __tablename__ = "price_history"
    __table_args__ = (
        UniqueConstraint("product_id", "recorded_date", name="uq_price_history_product_date"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    product_id = Column(String(36), nullable=False, index=True)
    price = Column(Float, nullable=False)
    recorded_date = Column(Date, nullable=False, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "price": self.price,
            "recorded_date": self.recorded_date,
        }


class Order(Base):
    """A saved order snapshot.

    items holds copies of the cart lines, so later catalog price changes
    never alter a saved order. total_price is the value computed at save time.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    items = Column(JSON, nullable=False, default=list)
    profit_margin = Column(Float, nullable=False, default=0)
    delivery_cost = Column(Float, nullable=False, default=0)
    total_price = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "items": list(self.items or []),
            "profit_margin": self.profit_margin,
            "delivery_cost": self.delivery_cost,
            "total_price": self.total_price,
            "created_at": self.created_at,
        }


# Logical table name -> ORM class, used by the generic row store
TABLES = {
    "products": Product,
    "price_history": PriceHistory,
    "orders": Order,
}
