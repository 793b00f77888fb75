"""Status polling: client status endpoint, bounded poller, scheduler sweep."""
from __future__ import annotations

from datetime import timedelta

from orderpay.services.polling import StatusPoller, poll_invoice_status, reconcile_pending
from tests.conftest import ADMIN_HEADERS, run


def test_status_endpoint_polls_provider(client, store, provider, pending_invoice):
    order_id, invoice_id = pending_invoice()

    pending = client.get("/payments/status", params={"order_id": order_id}).json()
    assert pending["status"] == "pending"
    assert pending["payment_status"] == "pending"
    assert pending["invoice_id"] == invoice_id
    assert pending["amount"] == 42200

    provider.set_status(invoice_id, "PAID")
    paid = client.get("/payments/status", params={"order_id": order_id}).json()
    assert paid["status"] == "paid"
    assert paid["payment_status"] == "success"
    assert paid["paid_at"]


def test_status_endpoint_unknown_order(client):
    assert client.get("/payments/status", params={"order_id": "order-0-x"}).status_code == 404


def test_status_before_invoice(client, seed_product, order_body):
    seed_product()
    order_id = client.post("/orders", json=order_body()).json()["order_id"]
    data = client.get("/payments/status", params={"order_id": order_id}).json()
    assert data["status"] == "pending"
    assert data["payment_status"] is None
    assert data["invoice_id"] is None


def test_provider_errors_are_swallowed(store, provider, pending_invoice):
    order_id, _ = pending_invoice()
    provider.configure(should_succeed=False)

    assert run(poll_invoice_status(order_id)) is None
    assert store.orders[order_id]["status"] == "pending"


def test_poller_gives_up_after_max_attempts(pending_invoice, provider):
    order_id, _ = pending_invoice()
    sleeps = []

    async def _sleep(seconds):
        sleeps.append(seconds)

    poller = StatusPoller(interval=5, max_attempts=3, sleep=_sleep)
    assert run(poller.run(order_id)) is None
    assert poller.attempts == 3
    assert sleeps == [5, 5]
    assert len([c for c in provider.calls if c["method"] == "get_invoice"]) == 3


def test_poller_stops_once_order_settles(pending_invoice, provider):
    order_id, invoice_id = pending_invoice()

    async def _sleep(seconds):
        provider.set_status(invoice_id, "PAID")

    poller = StatusPoller(interval=5, max_attempts=60, sleep=_sleep)
    assert run(poller.run(order_id)) == "paid"
    assert poller.attempts == 2


def test_sweep_applies_settled_invoices(store, provider, pending_invoice):
    paid_order, paid_invoice = pending_invoice("prod-a")
    open_order, _ = pending_invoice("prod-b")
    provider.set_status(paid_invoice, "SETTLED")

    result = run(reconcile_pending(max_orders=10))

    assert result == {"checked": 2, "applied": 1}
    assert store.orders[paid_order]["status"] == "paid"
    assert store.orders[open_order]["status"] == "pending"
    assert {e["source"] for e in store.events if e["order_id"] == paid_order} >= {"sweep"}


def test_sweep_respects_age_cutoff(store, provider, pending_invoice):
    _, fresh_invoice = pending_invoice("prod-a")
    _, old_invoice = pending_invoice("prod-b")
    store.payment_requests[old_invoice]["updated_at"] -= timedelta(hours=1)
    provider.set_status(fresh_invoice, "PAID")
    provider.set_status(old_invoice, "EXPIRED")

    result = run(reconcile_pending(max_orders=10, older_than_minutes=30))

    assert result == {"checked": 1, "applied": 1}
    assert store.payment_requests[old_invoice]["status"] == "expired"
    assert store.payment_requests[fresh_invoice]["status"] == "pending"


def test_sweep_skips_unreachable_provider(provider, pending_invoice):
    pending_invoice()
    provider.configure(should_succeed=False)
    assert run(reconcile_pending()) == {"checked": 1, "applied": 0}


def test_admin_reconcile_endpoint(client, provider, pending_invoice):
    _, invoice_id = pending_invoice()
    provider.set_status(invoice_id, "PAID")

    resp = client.post("/admin/reconcile", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert resp.json() == {"checked": 1, "applied": 1}


def test_poller_retries_after_a_store_error(store, provider, pending_invoice, monkeypatch):
    order_id, invoice_id = pending_invoice()
    provider.set_status(invoice_id, "PAID")
    real_get_order = store.get_order
    failures = []

    async def _flaky_get_order(oid):
        if not failures:
            failures.append(oid)
            raise ConnectionError("db blip")
        return await real_get_order(oid)

    async def _sleep(seconds):
        pass

    monkeypatch.setattr(store, "get_order", _flaky_get_order)

    poller = StatusPoller(interval=5, max_attempts=3, sleep=_sleep)
    assert run(poller.run(order_id)) == "paid"
    assert poller.attempts == 2
    assert failures == [order_id]


def test_sweep_continues_past_a_failing_request(store, provider, pending_invoice, monkeypatch):
    first_order, first_invoice = pending_invoice("prod-a")
    second_order, second_invoice = pending_invoice("prod-b")
    provider.set_status(first_invoice, "PAID")
    provider.set_status(second_invoice, "PAID")
    real_apply = store.apply_payment_outcome

    async def _flaky_apply(invoice_id, *args):
        if invoice_id == first_invoice:
            raise ConnectionError("db blip")
        return await real_apply(invoice_id, *args)

    monkeypatch.setattr(store, "apply_payment_outcome", _flaky_apply)

    assert run(reconcile_pending(max_orders=10)) == {"checked": 2, "applied": 1}
    assert store.orders[first_order]["status"] == "pending"
    assert store.orders[second_order]["status"] == "paid"
