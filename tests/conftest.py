"""Shared fixtures: in-memory store, fake provider and fake notifier so tests run without credentials."""
from __future__ import annotations

import asyncio
import os

# Set env vars BEFORE any app imports
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("PROVIDER_BACKEND", "fake")
os.environ.setdefault("XENDIT_CALLBACK_TOKEN", "test-callback-token")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("POLL_IN_BACKGROUND", "false")
os.environ.setdefault("WEBHOOK_STRICT_MODE", "false")

import pytest

CALLBACK_HEADERS = {"x-callback-token": "test-callback-token"}
ADMIN_HEADERS = {"x-admin-token": "test-admin-token"}


def run(coro):
    return asyncio.run(coro)


# ---------- Fakes ----------

@pytest.fixture(autouse=True)
def store():
    """Fresh in-memory store per test."""
    from orderpay.db import reset_store, set_store
    from orderpay.db.memory import MemoryStore

    s = MemoryStore()
    set_store(s)
    yield s
    reset_store()


@pytest.fixture(autouse=True)
def provider():
    from orderpay.gateway import reset_provider, set_provider
    from orderpay.gateway.fake_adapter import FakeProvider

    p = FakeProvider()
    set_provider(p)
    yield p
    reset_provider()


@pytest.fixture(autouse=True)
def notifier():
    from orderpay.notifications import reset_notifier, set_notifier
    from orderpay.notifications.fake_notifier import FakeNotifier

    n = FakeNotifier()
    set_notifier(n)
    yield n
    reset_notifier()


# ---------- Helpers ----------

@pytest.fixture()
def seed_product(store):
    """Insert a catalog product; defaults to IDR 10000 with 10 in stock."""
    def _seed(product_id="prod-a", price=10000, stock=10, **extra):
        product = {
            "id": product_id,
            "name": extra.pop("name", f"Product {product_id}"),
            "description": "",
            "price": price,
            "currency": extra.pop("currency", "IDR"),
            "image_url": "",
            "stock": stock,
            "is_active": extra.pop("is_active", True),
            "category": "general",
            **extra,
        }
        return run(store.upsert_product(product))
    return _seed


@pytest.fixture()
def order_body():
    def _body(*lines, **overrides):
        body = {
            "customer_name": "Siti Rahma",
            "customer_email": "siti@example.com",
            "customer_phone": "+6281234567890",
            "items": [{"product_id": pid, "quantity": qty} for pid, qty in (lines or [("prod-a", 2)])],
        }
        body.update(overrides)
        return body
    return _body


@pytest.fixture()
def pending_invoice(seed_product, order_body):
    """A pending order with an issued invoice: returns (order_id, invoice_id)."""
    from orderpay.schemas.orders import CreateOrderBody
    from orderpay.services.checkout import create_order
    from orderpay.services.invoices import issue_invoice

    def _make(product_id="prod-a", quantity=2, stock=10):
        seed_product(product_id, stock=stock)
        order = run(create_order(CreateOrderBody(**order_body((product_id, quantity)))))
        invoice = run(issue_invoice(order["order_id"]))
        return order["order_id"], invoice["invoice_id"]
    return _make


@pytest.fixture()
def client():
    """FastAPI TestClient (sync)."""
    from fastapi.testclient import TestClient
    from orderpay.main import app
    return TestClient(app)
