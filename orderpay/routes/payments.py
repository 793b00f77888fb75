# orderpay/routes/payments.py
from __future__ import annotations
from fastapi import APIRouter, Query

from ..schemas.payments import CreatePaymentBody, CreatePaymentOut, PaymentStatusOut
from ..services.invoices import issue_invoice
from ..services.polling import get_payment_status

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create", response_model=CreatePaymentOut)
async def create_payment(body: CreatePaymentBody):
    return await issue_invoice(body.order_id)


@router.get("/status", response_model=PaymentStatusOut)
async def payment_status(order_id: str = Query(..., min_length=1)):
    """
    Client-side polling target after the redirect to the hosted invoice page.
    Pending orders are checked against the provider before answering.
    """
    return await get_payment_status(order_id)
