# orderpay/services/checkout.py
"""Checkout: price a cart server-side, reserve stock, persist a pending order."""
from __future__ import annotations

import time
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Tuple

from ..db import get_store
from ..db.base import money
from ..errors import InsufficientStock, ValidationError
from ..schemas.orders import CreateOrderBody, OrderStatus
from ..settings import settings
from ..utils.logging import logger

# Decimal places of the smallest currency unit.
MINOR_UNITS = {"IDR": 0, "PHP": 2, "USD": 2}


def _oid() -> str:
    return f"order-{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


def quantize(amount: Decimal, currency: str) -> Decimal:
    """Round half-up to the currency's minor unit."""
    exp = Decimal(1).scaleb(-MINOR_UNITS.get(currency, 2))
    return money(amount).quantize(exp, rounding=ROUND_HALF_UP)


def compute_totals(subtotal: Decimal, currency: str) -> Dict[str, Decimal]:
    subtotal = quantize(subtotal, currency)
    tax = quantize(subtotal * settings.tax_rate, currency)
    delivery = quantize(settings.delivery_fee, currency)
    admin = quantize(settings.admin_fee, currency)
    return {
        "subtotal": subtotal,
        "tax_amount": tax,
        "delivery_fee": delivery,
        "admin_fee": admin,
        "total_amount": subtotal + tax + delivery + admin,
    }


def _merge_lines(body: CreateOrderBody) -> Dict[str, int]:
    merged: Dict[str, int] = {}
    for line in body.items:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return merged


async def _price_lines(quantities: Dict[str, int]) -> Tuple[List[Dict[str, Any]], Dict[str, Decimal]]:
    store = get_store()
    products = await store.get_products(quantities.keys())
    currency = settings.store_currency.value

    priced, subtotal = [], Decimal(0)
    for product_id, qty in quantities.items():
        product = products.get(product_id)
        if not product or not product.get("is_active", True):
            raise ValidationError(f"product {product_id} is unavailable")
        if product.get("currency", currency) != currency:
            raise ValidationError(
                f"product {product_id} is priced in {product.get('currency')}, store currency is {currency}"
            )
        if product["stock"] < qty:
            raise InsufficientStock(
                f"insufficient stock for {product['name']}: {product['stock']} left", product_id=product_id
            )
        unit = money(product["price"])
        line_total = quantize(unit * qty, currency)
        priced.append({
            "product_id": product_id,
            "product_name": product["name"],
            "product_image": product.get("image_url") or None,
            "quantity": qty,
            "unit_price": unit,
            "total_price": line_total,
        })
        subtotal += line_total
    return priced, compute_totals(subtotal, currency)


async def _release(reserved: List[Tuple[str, int]]) -> None:
    """Put reserved quantities back; one failed release does not stop the rest."""
    store = get_store()
    for product_id, qty in reserved:
        try:
            await store.release_stock(product_id, qty)
        except Exception:
            logger.exception("stock_release_failed", product_id=product_id, quantity=qty)


async def _reserve(lines: List[Dict[str, Any]]) -> List[Tuple[str, int]]:
    """Decrement stock line by line in product-id order; undo everything on the first shortfall."""
    store = get_store()
    reserved: List[Tuple[str, int]] = []
    for line in sorted(lines, key=lambda l: l["product_id"]):
        try:
            ok = await store.reserve_stock(line["product_id"], line["quantity"])
        except BaseException:
            await _release(reserved)
            raise
        if not ok:
            await _release(reserved)
            logger.info("stock_reservation_failed", product_id=line["product_id"], quantity=line["quantity"])
            raise InsufficientStock(
                f"insufficient stock for {line['product_name']}", product_id=line["product_id"]
            )
        reserved.append((line["product_id"], line["quantity"]))
    return reserved


async def create_order(body: CreateOrderBody) -> Dict[str, Any]:
    if not body.items:
        raise ValidationError("order must contain at least one item")

    lines, amounts = await _price_lines(_merge_lines(body))
    reserved = await _reserve(lines)

    record = {
        "order_id": _oid(),
        "customer_email": body.customer_email,
        "customer_name": body.customer_name,
        "customer_phone": body.customer_phone,
        "shipping_address": body.shipping_address.model_dump() if body.shipping_address else None,
        "items": lines,
        **amounts,
        "currency": settings.store_currency.value,
        "status": OrderStatus.PENDING.value,
        "notes": body.notes,
    }
    try:
        order = await get_store().insert_order(record)
    except BaseException:
        await _release(reserved)
        raise

    logger.info(
        "order_created",
        order_id=order["order_id"],
        total_amount=str(order["total_amount"]),
        currency=order["currency"],
        lines=len(lines),
    )
    return order
