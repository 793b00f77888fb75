# orderpay/schemas/orders.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class Currency(str, Enum):
    IDR = "IDR"
    PHP = "PHP"
    USD = "USD"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


# Operator-driven fulfillment moves; payment outcomes are owned by reconciliation.
FULFILLMENT_TRANSITIONS: Dict[OrderStatus, set] = {
    OrderStatus.PAID: {OrderStatus.SHIPPED, OrderStatus.REFUNDED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
}


# ---- Checkout input ----------------------------------------------------------
class OrderLineIn(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class ShippingAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class CreateOrderBody(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_email: str = Field(..., min_length=3)
    customer_phone: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    notes: Optional[str] = None
    items: List[OrderLineIn]
    # Client-side totals are accepted for compatibility but never used.
    total_amount: Optional[float] = None

    @field_validator("customer_email")
    @classmethod
    def _normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("customer_email must be an email address")
        return v

    @field_validator("customer_name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("customer_name is required")
        return v


# ---- Output ------------------------------------------------------------------
class OrderLineOut(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    product_image: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float


class OrderOut(BaseModel):
    id: int
    order_id: str
    status: OrderStatus
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    items: List[OrderLineOut]
    subtotal: float
    tax_amount: float
    delivery_fee: float
    admin_fee: float
    total_amount: float
    currency: Currency
    payment_request_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, order: Dict[str, Any]) -> "OrderOut":
        return cls(**order)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class OrderListOut(BaseModel):
    data: List[OrderOut]
    pagination: Pagination


class StatusUpdateBody(BaseModel):
    status: str


class ReconciliationEventOut(BaseModel):
    invoice_id: str
    order_id: Optional[str] = None
    reported_status: Optional[str] = None
    mapped_status: Optional[str] = None
    source: str
    outcome: str
    detail: Optional[str] = None
    received_at: datetime
