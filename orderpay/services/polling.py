# orderpay/services/polling.py
"""Provider status polling: on demand, bounded per order, and as a sweep over pending requests."""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..db import get_store
from ..errors import NotFound, ProviderUnavailable
from ..gateway import get_provider
from ..schemas.orders import OrderStatus
from ..schemas.payments import PaymentStatus
from ..settings import settings
from ..utils.clock import now
from ..utils.logging import logger
from .reconciliation import EventSource, ReconcileOutcome, apply_provider_status

_background_polls: Set[asyncio.Task] = set()


async def poll_invoice_status(
    order_id: str, source: EventSource = EventSource.POLL
) -> Optional[ReconcileOutcome]:
    """Fetch the active invoice of a pending order from the provider and apply it.

    Returns ``None`` when there is nothing to poll or the provider could not be reached.
    """
    store = get_store()
    order = await store.get_order(order_id)
    if order is None:
        raise NotFound(f"order {order_id} not found")

    invoice_id = order.get("payment_request_id")
    if not invoice_id:
        return None
    request = await store.get_payment_request(invoice_id)
    if request is None or request["status"] != PaymentStatus.PENDING.value:
        return None

    try:
        invoice = await get_provider().get_invoice(invoice_id)
    except ProviderUnavailable as exc:
        logger.warning("poll_failed", order_id=order_id, invoice_id=invoice_id, error=exc.detail)
        return None
    return await apply_provider_status(invoice_id, invoice.status, invoice.paid_at, invoice.raw, source)


async def get_payment_status(order_id: str) -> Dict[str, Any]:
    """Current order/payment state, polling the provider first while the order is pending."""
    store = get_store()
    order = await store.get_order(order_id)
    if order is None:
        raise NotFound(f"order {order_id} not found")

    if order["status"] == OrderStatus.PENDING.value:
        await poll_invoice_status(order_id)
        order = await store.get_order(order_id)

    request = None
    if order.get("payment_request_id"):
        request = await store.get_payment_request(order["payment_request_id"])
    if request is None:
        request = await store.get_latest_payment_request(order_id)

    return {
        "order_id": order_id,
        "status": order["status"],
        "payment_status": request["status"] if request else None,
        "amount": order["total_amount"],
        "currency": order["currency"],
        "invoice_id": request["invoice_id"] if request else None,
        "paid_at": request.get("paid_at") if request else None,
    }


class StatusPoller:
    """Poll one order at a fixed interval until it leaves ``pending`` or attempts run out."""

    def __init__(
        self,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.interval = settings.poll_interval_seconds if interval is None else interval
        self.max_attempts = settings.poll_max_attempts if max_attempts is None else max_attempts
        self._sleep = sleep
        self.attempts = 0

    async def run(self, order_id: str) -> Optional[str]:
        """Return the order's final status, or ``None`` if it was still pending after the last attempt."""
        store = get_store()
        for attempt in range(1, self.max_attempts + 1):
            self.attempts = attempt
            try:
                await poll_invoice_status(order_id, EventSource.POLL)
                order = await store.get_order(order_id)
            except NotFound:
                return None
            except Exception:
                logger.exception("poll_attempt_failed", order_id=order_id, attempt=attempt)
            else:
                if order is None:
                    return None
                if order["status"] != OrderStatus.PENDING.value:
                    logger.info("poller_finished", order_id=order_id, status=order["status"], attempts=attempt)
                    return order["status"]
            if attempt < self.max_attempts:
                await self._sleep(self.interval)

        logger.info("poller_exhausted", order_id=order_id, attempts=self.attempts)
        return None


async def _run_poller(order_id: str) -> None:
    try:
        await StatusPoller().run(order_id)
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("background_poll_failed", order_id=order_id)


def start_background_poll(order_id: str) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(_run_poller(order_id))
    _background_polls.add(task)
    task.add_done_callback(_background_polls.discard)
    return task


async def cancel_background_polls() -> None:
    tasks = list(_background_polls)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    _background_polls.clear()


async def reconcile_pending(max_orders: int = 50, older_than_minutes: int = 0) -> Dict[str, int]:
    """Sweep pending payment requests and apply whatever the provider reports for each."""
    store = get_store()
    cutoff = now() - timedelta(minutes=older_than_minutes) if older_than_minutes else None
    requests = await store.list_pending_payment_requests(limit=max_orders, updated_before=cutoff)

    checked = applied = 0
    provider = get_provider()
    for request in requests:
        checked += 1
        invoice_id = request["invoice_id"]
        try:
            invoice = await provider.get_invoice(invoice_id)
            result = await apply_provider_status(
                invoice_id, invoice.status, invoice.paid_at, invoice.raw, EventSource.SWEEP
            )
        except ProviderUnavailable as exc:
            logger.warning("sweep_poll_failed", invoice_id=invoice_id, error=exc.detail)
            continue
        except Exception:
            logger.exception("sweep_request_failed", invoice_id=invoice_id)
            continue
        if result.applied:
            applied += 1

    logger.info("sweep_finished", checked=checked, applied=applied)
    return {"checked": checked, "applied": applied}
