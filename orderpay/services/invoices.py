# orderpay/services/invoices.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from ..db import get_store
from ..errors import DuplicatePendingRequest, NotFound, OrderNotPayable
from ..gateway import get_provider
from ..notifications import dispatch
from ..schemas.orders import OrderStatus
from ..schemas.payments import PaymentMethod, PaymentStatus
from ..settings import settings
from ..utils.clock import now
from ..utils.locks import order_locks
from ..utils.logging import logger
from .reconciliation import settle_lapsed_request


def _wire_amount(value: Any) -> Any:
    d = Decimal(str(value))
    return int(d) if d == d.to_integral_value() else float(d)


def _invoice_items(order: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Order lines plus one line per non-zero fee, so the itemized invoice sums to the total."""
    items = [
        {
            "name": line.get("product_name") or line["product_id"],
            "quantity": line["quantity"],
            "price": _wire_amount(line["unit_price"]),
        }
        for line in order["items"]
    ]
    tax_label = f"Tax ({(settings.tax_rate * 100).normalize():f}%)"
    for name, key in ((tax_label, "tax_amount"), ("Delivery Fee", "delivery_fee"), ("Admin Fee", "admin_fee")):
        if Decimal(str(order[key])) > 0:
            items.append({"name": name, "quantity": 1, "price": _wire_amount(order[key])})
    return items


def build_invoice_payload(order: Dict[str, Any]) -> Dict[str, Any]:
    name_parts = (order.get("customer_name") or "").split()
    base_url = settings.public_base_url.strip().rstrip("/")
    customer = {
        "given_names": name_parts[0] if name_parts else "Customer",
        "surname": " ".join(name_parts[1:]) or "Customer",
        "email": order["customer_email"],
    }
    if order.get("customer_phone"):
        customer["mobile_number"] = order["customer_phone"]
    return {
        "external_id": order["order_id"],
        "amount": _wire_amount(order["total_amount"]),
        "currency": order["currency"],
        "description": f"Payment for order {order['order_id']}",
        "invoice_duration": settings.invoice_duration_seconds,
        "customer": customer,
        "success_redirect_url": f"{base_url}/orders?success=true&order_id={order['order_id']}",
        "failure_redirect_url": f"{base_url}/orders?success=false&order_id={order['order_id']}",
        "items": _invoice_items(order),
        "should_send_email": False,
    }


async def _open_request(order: Dict[str, Any]) -> Dict[str, Any]:
    store = get_store()
    invoice = await get_provider().create_invoice(build_invoice_payload(order))
    try:
        request = await store.insert_payment_request({
            "order_id": order["order_id"],
            "invoice_id": invoice.invoice_id,
            "amount": order["total_amount"],
            "currency": order["currency"],
            "payment_method": PaymentMethod.INVOICE.value,
            "status": PaymentStatus.PENDING.value,
            "payment_url": invoice.invoice_url,
            "expiry_date": invoice.expiry_date,
            "raw_payload": invoice.raw,
        })
    except DuplicatePendingRequest as exc:
        raise OrderNotPayable("order already has a pending invoice") from exc
    await store.attach_payment_request(order["order_id"], invoice.invoice_id)
    return request


async def issue_invoice(order_id: str) -> Dict[str, Any]:
    """Request a hosted invoice for a pending order and record it as the order's active request.

    A pending request past its expiry date is replaced only after the provider
    confirms it closed unpaid; if it turns out to have been paid, the payment is
    applied and the order is no longer payable.
    """
    store = get_store()
    paid_order = None

    async with order_locks.hold(order_id):
        order = await store.get_order(order_id)
        if order is None:
            raise NotFound(f"order {order_id} not found")
        if order["status"] != OrderStatus.PENDING.value:
            raise OrderNotPayable(f"order is already {order['status']}")

        pending = await store.get_pending_payment_request(order_id)
        if pending is not None:
            expiry = pending.get("expiry_date")
            if expiry is None or expiry > now():
                raise OrderNotPayable("order already has a pending invoice")
            replaceable, paid_order = await settle_lapsed_request(pending)
            if not replaceable and paid_order is None:
                raise OrderNotPayable("order already has a pending invoice")

        if paid_order is None:
            request = await _open_request(order)
            order = await store.get_order(order_id)

    if paid_order is not None:
        await dispatch("payment_success", paid_order)
        raise OrderNotPayable("order is already paid")

    logger.info(
        "invoice_issued",
        order_id=order_id,
        invoice_id=request["invoice_id"],
        amount=str(request["amount"]),
        currency=request["currency"],
    )
    await dispatch("checkout", order)

    if settings.poll_in_background:
        from .polling import start_background_poll

        start_background_poll(order_id)

    return {
        "order_id": order_id,
        "invoice_id": request["invoice_id"],
        "payment_url": request["payment_url"],
        "status": request["status"],
        "expiry_date": request.get("expiry_date"),
    }
