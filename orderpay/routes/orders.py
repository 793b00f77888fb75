# orderpay/routes/orders.py
from __future__ import annotations
from typing import List

from fastapi import APIRouter, Query

from ..schemas.orders import CreateOrderBody, OrderOut
from ..services import checkout
from ..services.orders import get_order, list_customer_orders


router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", status_code=201, response_model=OrderOut)
async def create_order(body: CreateOrderBody):
    """
    Totals are recomputed from the catalog; any client-side total_amount is ignored.
    """
    order = await checkout.create_order(body)
    return OrderOut.from_record(order)


@router.get("", response_model=List[OrderOut])
async def list_orders_endpoint(email: str = Query(""), limit: int = Query(50)):
    rows = await list_customer_orders(email, limit=limit)
    return [OrderOut.from_record(o) for o in rows]


@router.get("/{order_id}", response_model=OrderOut)
async def get_order_endpoint(order_id: str):
    return OrderOut.from_record(await get_order(order_id))
