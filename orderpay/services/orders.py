# orderpay/services/orders.py
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from ..db import get_store
from ..errors import InvalidTransition, NotFound, ValidationError
from ..schemas.orders import FULFILLMENT_TRANSITIONS, OrderStatus
from ..utils.locks import order_locks
from ..utils.logging import logger
from .reconciliation import EventSource


async def get_order(order_id: str) -> Dict[str, Any]:
    order = await get_store().get_order(order_id)
    if order is None:
        raise NotFound(f"order {order_id} not found")
    return order


async def list_orders(status: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    """Newest-first page of orders, optionally filtered by status."""
    if status:
        try:
            status = OrderStatus(status).value
        except ValueError:
            raise ValidationError(f"unknown order status {status!r}")
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    rows, total = await get_store().list_orders(status=status or None, limit=limit, offset=(page - 1) * limit)
    return {
        "data": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


async def list_customer_orders(email: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Order history for one customer, newest first."""
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("email is required")
    return await get_store().list_orders_by_email(email, limit=min(max(limit, 1), 100))


async def update_order_status(order_id: str, new_status: str) -> Dict[str, Any]:
    """Operator fulfillment move (shipped, delivered, refunded) from a paid order."""
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"unknown order status {new_status!r}")
    sources = [s.value for s, targets in FULFILLMENT_TRANSITIONS.items() if target in targets]
    if not sources:
        raise ValidationError(f"status {target.value} cannot be set manually")

    store = get_store()
    async with order_locks.hold(order_id):
        order = await get_order(order_id)
        if not await store.transition_order(order_id, sources, target.value):
            raise InvalidTransition(f"cannot move order from {order['status']} to {target.value}")
        if target is OrderStatus.REFUNDED:
            await store.mark_payment_refunded(order_id)
        await store.record_event({
            "invoice_id": order.get("payment_request_id") or "",
            "order_id": order_id,
            "reported_status": None,
            "mapped_status": target.value,
            "source": EventSource.LOCAL.value,
            "outcome": "applied",
            "detail": f"operator moved order from {order['status']}",
        })
        order = await store.get_order(order_id)

    logger.info("order_status_updated", order_id=order_id, status=target.value)
    return order


async def list_events(order_id: str) -> List[Dict[str, Any]]:
    await get_order(order_id)
    return await get_store().list_events(order_id)
