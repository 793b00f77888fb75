from __future__ import annotations
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from ..schemas.orders import OrderListOut, OrderOut, ReconciliationEventOut, StatusUpdateBody
from ..schemas.payments import ReconcileSweepOut
from ..services import orders as orders_service
from ..services.polling import reconcile_pending
from .auth import require_admin

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/orders", response_model=OrderListOut)
async def list_orders(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    return await orders_service.list_orders(status=status, page=page, limit=limit)


@router.get("/orders/{order_id}/events", response_model=List[ReconciliationEventOut])
async def order_events(order_id: str):
    """
    Audit trail: every webhook, poll and sweep result recorded for the order.
    """
    return await orders_service.list_events(order_id)


@router.patch("/orders/{order_id}/status", response_model=OrderOut)
async def update_status(order_id: str, body: StatusUpdateBody):
    return OrderOut.from_record(await orders_service.update_order_status(order_id, body.status))


@router.post("/reconcile", response_model=ReconcileSweepOut)
async def reconcile(
    max_orders: int = Query(50, ge=1, le=500),
    older_than_minutes: int = Query(0, ge=0),
):
    """
    Sweep pending invoices against the provider (same job as scripts/reconcile_pending.py).
    """
    return await reconcile_pending(max_orders=max_orders, older_than_minutes=older_than_minutes)
