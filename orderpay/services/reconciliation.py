# orderpay/services/reconciliation.py
"""Apply the provider's view of an invoice to the local payment request and order.

Webhooks, client polls and scheduler sweeps all end up in
``apply_provider_status``. It is safe to call any number of times in any
order: terminal statuses are sticky, a paid order never regresses, and the
payment-success notification goes out only for the call that actually moved
the order to ``paid``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..db import get_store
from ..gateway import get_provider
from ..notifications import dispatch
from ..schemas.orders import OrderStatus
from ..schemas.payments import PaymentStatus
from ..utils.clock import now
from ..utils.locks import order_locks
from ..utils.logging import logger


class Outcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"
    UNKNOWN_INVOICE = "unknown_invoice"


class EventSource(str, Enum):
    WEBHOOK = "webhook"
    POLL = "poll"
    SWEEP = "sweep"
    LOCAL = "local"


# Provider status -> local payment status. PENDING is known but changes nothing.
PROVIDER_STATUS_MAP: Dict[str, PaymentStatus] = {
    "PAID": PaymentStatus.SUCCESS,
    "SETTLED": PaymentStatus.SUCCESS,
    "EXPIRED": PaymentStatus.EXPIRED,
    "FAILED": PaymentStatus.FAILED,
}
NO_CHANGE_STATUSES = {"PENDING"}


def map_provider_status(status: Optional[str]) -> Optional[PaymentStatus]:
    return PROVIDER_STATUS_MAP.get((status or "").strip().upper())


@dataclass(frozen=True)
class ReconcileOutcome:
    outcome: Outcome
    invoice_id: str
    order_id: Optional[str] = None
    payment_status: Optional[str] = None
    order_status: Optional[str] = None
    detail: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome is Outcome.APPLIED


async def _record(
    result: ReconcileOutcome,
    reported: Optional[str],
    mapped: Optional[str],
    source: EventSource,
) -> None:
    event = {
        "invoice_id": result.invoice_id,
        "order_id": result.order_id,
        "reported_status": reported,
        "mapped_status": mapped,
        "source": source.value,
        "outcome": result.outcome.value,
        "detail": result.detail,
    }
    await get_store().record_event(event)
    if result.outcome in (Outcome.APPLIED, Outcome.DUPLICATE):
        logger.info("reconciliation_event", **event)
    else:
        logger.warning("reconciliation_event", **event)


async def record_unknown(
    invoice_ref: str,
    reported: Optional[str],
    source: EventSource,
    detail: str = "no payment request for invoice",
) -> ReconcileOutcome:
    result = ReconcileOutcome(Outcome.UNKNOWN_INVOICE, invoice_ref, detail=detail)
    await _record(result, reported, None, source)
    return result


async def record_ignored(
    request: Dict[str, Any],
    reported: Optional[str],
    source: EventSource,
    detail: str,
) -> ReconcileOutcome:
    """Log a delivery that names a known invoice but must not be applied to it."""
    result = ReconcileOutcome(
        Outcome.IGNORED,
        request["invoice_id"],
        request["order_id"],
        payment_status=request.get("status"),
        detail=detail,
    )
    await _record(result, reported, None, source)
    return result


async def _apply_locked(
    invoice_id: str,
    order_id: str,
    reported: Optional[str],
    paid_at: Optional[datetime],
    raw_payload: Optional[Dict[str, Any]],
    source: EventSource,
) -> Tuple[ReconcileOutcome, Optional[Dict[str, Any]]]:
    """Apply one reported status; the caller holds ``order_locks`` for ``order_id``.

    Returns the outcome and, when this call moved the order to ``paid``, the order to notify about.
    """
    store = get_store()
    mapped = map_provider_status(reported)
    notify_order = None

    if mapped is None:
        order = await store.get_order(order_id)
        current = await store.get_payment_request(invoice_id)
        detail = (
            "provider reports invoice still pending"
            if reported in NO_CHANGE_STATUSES
            else f"unrecognized provider status {reported!r}"
        )
        result = ReconcileOutcome(
            Outcome.IGNORED,
            invoice_id,
            order_id,
            payment_status=current["status"] if current else None,
            order_status=order["status"] if order else None,
            detail=detail,
        )
    else:
        change = await store.apply_payment_outcome(invoice_id, mapped.value, paid_at, raw_payload)
        payment_status = change.payment["status"] if change.payment else None
        order_status = change.order["status"] if change.order else None
        if change.request_updated:
            outcome, detail = Outcome.APPLIED, None
            if not change.order_updated:
                detail = f"order left {order_status}"
        elif payment_status == mapped.value:
            outcome, detail = Outcome.DUPLICATE, None
        else:
            outcome, detail = Outcome.STALE, f"payment already {payment_status}"
        result = ReconcileOutcome(outcome, invoice_id, order_id, payment_status, order_status, detail)
        if (
            change.order_updated
            and mapped is PaymentStatus.SUCCESS
            and order_status == OrderStatus.PAID.value
        ):
            notify_order = change.order

    await _record(result, reported, mapped.value if mapped else None, source)
    return result, notify_order


async def apply_provider_status(
    invoice_id: str,
    status: Optional[str],
    paid_at: Optional[datetime] = None,
    raw_payload: Optional[Dict[str, Any]] = None,
    source: EventSource = EventSource.WEBHOOK,
) -> ReconcileOutcome:
    source = EventSource(source)
    reported = (status or "").strip().upper() or None

    request = await get_store().get_payment_request(invoice_id)
    if request is None:
        return await record_unknown(invoice_id, reported, source)

    async with order_locks.hold(request["order_id"]):
        result, notify_order = await _apply_locked(
            invoice_id, request["order_id"], reported, paid_at, raw_payload, source
        )

    if notify_order is not None:
        await dispatch("payment_success", notify_order)
    return result


async def retire_lapsed_request(
    request: Dict[str, Any],
    reported: Optional[str],
    source: EventSource = EventSource.LOCAL,
) -> bool:
    """Expire a pending request whose expiry date has passed; the order is left untouched.

    The caller must already hold ``order_locks`` for the request's order.
    """
    retired = await get_store().retire_payment_request(request["invoice_id"], now())
    result = ReconcileOutcome(
        Outcome.APPLIED if retired else Outcome.STALE,
        request["invoice_id"],
        request["order_id"],
        payment_status=PaymentStatus.EXPIRED.value if retired else request.get("status"),
        detail="lapsed request retired" if retired else "request no longer pending or not yet expired",
    )
    await _record(result, reported, PaymentStatus.EXPIRED.value, source)
    return retired


async def settle_lapsed_request(request: Dict[str, Any]) -> Tuple[bool, Optional[Dict[str, Any]]]:
    """Ask the provider about a request that has lapsed on the local clock before it is replaced.

    The caller must already hold ``order_locks`` for the request's order. Returns
    ``(replaceable, paid_order)``: the request is retired only when the provider
    confirms it ended unpaid; a late payment is applied instead and the paid order
    is returned for notification. ``ProviderUnavailable`` propagates and nothing changes.
    """
    invoice_id = request["invoice_id"]
    invoice = await get_provider().get_invoice(invoice_id)
    reported = (invoice.status or "").strip().upper() or None
    mapped = map_provider_status(reported)

    if mapped is PaymentStatus.SUCCESS:
        _, paid_order = await _apply_locked(
            invoice_id, request["order_id"], reported, invoice.paid_at, invoice.raw, EventSource.LOCAL
        )
        return False, paid_order
    if mapped in (PaymentStatus.EXPIRED, PaymentStatus.FAILED):
        return await retire_lapsed_request(request, reported), None

    await record_ignored(request, reported, EventSource.LOCAL, "provider has not closed the lapsed invoice")
    return False, None
