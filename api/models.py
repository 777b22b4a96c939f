from typing import List, Optional, Union
from pydantic import BaseModel, Field
from datetime import date, datetime


# Request Models
class ProductCreate(BaseModel):
    """Request model for adding a single product."""

    name: str = Field(..., description="Product name (required, trimmed)")
    price: Optional[Union[float, str]] = Field(
        default=None, description="Price as a number or text such as '5,000'; empty means unpriced"
    )


class BulkImportRequest(BaseModel):
    """Free text, one product per line, optional trailing price."""

    text: str = Field(..., description="Lines like 'سكر 10 كيلو 31000'")


class PriceUpdate(BaseModel):
    price: Optional[Union[float, str]] = Field(
        default=None, description="New price; empty clears it"
    )


class ReviewRequest(BaseModel):
    product_ids: List[str] = Field(..., min_length=1)
    batch_id: Optional[str] = None


class CartItemModel(BaseModel):
    """A cart line as stored inside an order."""

    product_id: str
    name: str
    original_price: float
    quantity: int = Field(default=1, ge=1)
    item_profit_percent: Optional[float] = None


class OrderCreate(BaseModel):
    name: Optional[str] = Field(default=None, description="Defaults to the save time")
    items: List[CartItemModel] = Field(..., min_length=1)
    profit_margin: float = 0
    delivery_cost: Optional[Union[float, str]] = 0


class QuoteRequest(BaseModel):
    """An unsaved cart to price."""

    name: Optional[str] = None
    items: List[CartItemModel] = Field(default=[])
    profit_margin: float = 0
    delivery_cost: Optional[Union[float, str]] = 0


# Response Models
class Product(BaseModel):
    """API representation of a catalog product."""

    id: str
    name: str
    price: Optional[float] = None
    last_updated: Optional[datetime] = None
    is_review_requested: bool = False
    review_batch_id: Optional[str] = None

    class Config:
        from_attributes = True


class ImportResponse(BaseModel):
    success: bool
    count: int
    products: List[Product]
    message: str


class ReviewResponse(BaseModel):
    batch_id: str
    count: int


class PendingResponse(BaseModel):
    count: int
    products: List[Product]


class HistoryEntry(BaseModel):
    product_id: str
    product_name: str
    price: float
    recorded_date: date


class Order(BaseModel):
    """API representation of a saved order."""

    id: str
    name: str
    items: List[CartItemModel]
    profit_margin: float
    delivery_cost: float
    total_price: float
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QuoteResponse(BaseModel):
    sub_total: float
    delivery: float
    grand_total: float
    receipt: str


class DeleteResponse(BaseModel):
    deleted: int


class ErrorResponse(BaseModel):
    """Error response model."""

    detail: str
