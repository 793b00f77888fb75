# orderpay/services/webhooks.py
"""Provider webhook ingestion.

Two payload shapes arrive on the same endpoint:

* invoice callbacks: ``{"id", "external_id", "status", "paid_at"?}``
* capture events: ``{"event": "payment.capture", "created", "data": {"reference_id", "invoice_id"?}}``

Any other object that names an ``event`` is acknowledged and ignored.
"""
from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

from ..db import get_store
from ..errors import NotFound, Unauthorized, ValidationError
from ..settings import settings
from ..utils.clock import parse_timestamp
from ..utils.logging import logger
from .reconciliation import EventSource, Outcome, apply_provider_status, record_ignored, record_unknown

CAPTURE_EVENT = "payment.capture"


@dataclass(frozen=True)
class InvoiceCallback:
    invoice_id: str
    external_id: str
    status: str
    paid_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentCapture:
    reference_id: str
    invoice_id: Optional[str] = None
    created: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Unrecognized:
    event: str
    raw: Dict[str, Any] = field(default_factory=dict)


WebhookPayload = Union[InvoiceCallback, PaymentCapture, Unrecognized]


def verify_callback_token(token: Optional[str]) -> None:
    expected = settings.callback_token
    if not expected:
        logger.error("webhook_rejected", reason="callback token not configured")
        raise Unauthorized("callback token is not configured")
    if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("webhook_rejected", reason="invalid callback token")
        raise Unauthorized("invalid callback token")


def _required_str(obj: Dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"webhook payload is missing {key!r}")
    return value.strip()


def parse_webhook(body: Any) -> WebhookPayload:
    if not isinstance(body, dict):
        raise ValidationError("webhook body must be a JSON object")

    event = body.get("event")
    if event == CAPTURE_EVENT:
        data = body.get("data")
        if not isinstance(data, dict):
            raise ValidationError("payment.capture payload is missing 'data'")
        invoice_id = data.get("invoice_id")
        return PaymentCapture(
            reference_id=_required_str(data, "reference_id"),
            invoice_id=invoice_id if isinstance(invoice_id, str) and invoice_id else None,
            created=parse_timestamp(body.get("created")),
            raw=body,
        )
    if isinstance(event, str) and event:
        return Unrecognized(event=event, raw=body)

    return InvoiceCallback(
        invoice_id=_required_str(body, "id"),
        external_id=_required_str(body, "external_id"),
        status=_required_str(body, "status").upper(),
        paid_at=parse_timestamp(body.get("paid_at")),
        raw=body,
    )


async def handle_webhook(body: Any) -> Dict[str, Any]:
    """Parse and apply one (already authenticated) webhook delivery; returns the acknowledgement."""
    payload = parse_webhook(body)

    if isinstance(payload, Unrecognized):
        logger.info("webhook_ignored", provider_event=payload.event)
        return {"received": True, "outcome": Outcome.IGNORED.value, "warning": f"unhandled event {payload.event}"}

    if isinstance(payload, PaymentCapture):
        invoice_id = payload.invoice_id
        if invoice_id is None:
            order = await get_store().get_order(payload.reference_id)
            invoice_id = order.get("payment_request_id") if order else None
        if invoice_id is None:
            result = await record_unknown(
                payload.reference_id, "PAID", EventSource.WEBHOOK, detail="no active invoice for reference"
            )
        else:
            result = await apply_provider_status(
                invoice_id, "PAID", payload.created, payload.raw, EventSource.WEBHOOK
            )
    else:
        request = await get_store().get_payment_request(payload.invoice_id)
        if request is not None and request["order_id"] != payload.external_id:
            result = await record_ignored(
                request,
                payload.status,
                EventSource.WEBHOOK,
                detail=f"external_id {payload.external_id} does not match order {request['order_id']}",
            )
        else:
            result = await apply_provider_status(
                payload.invoice_id, payload.status, payload.paid_at, payload.raw, EventSource.WEBHOOK
            )

    if result.outcome is Outcome.UNKNOWN_INVOICE:
        if settings.webhook_strict_mode:
            raise NotFound(f"unknown invoice {result.invoice_id}")
        return {
            "received": True,
            "outcome": result.outcome.value,
            "invoice_id": result.invoice_id,
            "warning": "payment request not found",
        }

    return {
        "received": True,
        "outcome": result.outcome.value,
        "invoice_id": result.invoice_id,
        "payment_status": result.payment_status,
        "order_status": result.order_status,
        "warning": result.detail if result.outcome in (Outcome.STALE, Outcome.IGNORED) else None,
    }
