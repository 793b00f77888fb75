"""Best-effort notification dispatch."""
from __future__ import annotations

import asyncio

from orderpay.notifications import dispatch, reset_notifier, set_notifier
from orderpay.notifications.port import Notifier
from orderpay.settings import settings
from tests.conftest import run

ORDER = {"order_id": "order-1-abc", "customer_email": "a@example.com", "total_amount": 1, "currency": "IDR"}


class _SlowNotifier(Notifier):
    async def notify_checkout(self, order):
        await asyncio.sleep(1)

    async def notify_payment_success(self, order):
        await asyncio.sleep(1)


def test_dispatch_records_with_fake(notifier):
    assert run(dispatch("payment_success", ORDER)) is True
    assert notifier.count("payment_success", "order-1-abc") == 1


def test_dispatch_swallows_failures(notifier):
    notifier.configure(should_succeed=False)
    assert run(dispatch("checkout", ORDER)) is False
    assert notifier.sent == []


def test_dispatch_times_out(monkeypatch):
    monkeypatch.setattr(settings, "notify_timeout_seconds", 0.01)
    set_notifier(_SlowNotifier())
    assert run(dispatch("checkout", ORDER)) is False


def test_default_notifier_logs():
    reset_notifier()
    assert run(dispatch("checkout", ORDER)) is True
