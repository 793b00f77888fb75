# orderpay/schemas/payments.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    EWALLET = "ewallet"
    VIRTUAL_ACCOUNT = "virtual_account"
    QR_CODE = "qr_code"
    INVOICE = "invoice"
    GOPAY = "gopay"
    OVO = "ovo"
    DANA = "dana"


class CreatePaymentBody(BaseModel):
    order_id: str = Field(..., min_length=1)


class CreatePaymentOut(BaseModel):
    order_id: str
    invoice_id: str
    payment_url: str
    status: str
    expiry_date: Optional[datetime] = None


class PaymentStatusOut(BaseModel):
    order_id: str
    status: str
    payment_status: Optional[PaymentStatus] = None
    amount: float
    currency: str
    invoice_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
    invoice_id: Optional[str] = None
    payment_status: Optional[str] = None
    order_status: Optional[str] = None
    warning: Optional[str] = None


class ReconcileSweepOut(BaseModel):
    checked: int
    applied: int
