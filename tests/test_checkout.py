"""Checkout: server-side pricing, stock reservation and compensation."""
from __future__ import annotations

import asyncio
from decimal import Decimal

import pydantic
import pytest

from orderpay.errors import InsufficientStock, ValidationError
from orderpay.schemas.orders import CreateOrderBody, Currency
from orderpay.services.checkout import compute_totals, create_order, quantize
from orderpay.settings import Settings
from tests.conftest import run


# ---------- HTTP ----------

def test_create_order_prices_server_side(client, store, seed_product, order_body):
    """2 x 10000 with 11% tax, 15000 delivery and 5000 admin fee -> 20000 + 2200 + 15000 + 5000."""
    seed_product("prod-a", price=10000, stock=10)

    resp = client.post("/orders", json=order_body(("prod-a", 2), total_amount=1))
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "pending"
    assert data["subtotal"] == 20000
    assert data["tax_amount"] == 2200
    assert data["delivery_fee"] == 15000
    assert data["admin_fee"] == 5000
    assert data["total_amount"] == 42200
    assert data["currency"] == "IDR"
    assert data["order_id"].startswith("order-")
    assert data["items"][0]["total_price"] == 20000

    assert store.products["prod-a"]["stock"] == 8


def test_get_order(client, seed_product, order_body):
    seed_product()
    order_id = client.post("/orders", json=order_body()).json()["order_id"]

    resp = client.get(f"/orders/{order_id}")
    assert resp.status_code == 200
    assert resp.json()["order_id"] == order_id

    assert client.get("/orders/order-missing").status_code == 404


def test_orders_by_email_newest_first(client, seed_product, order_body):
    seed_product(stock=100)
    mine = [client.post("/orders", json=order_body(("prod-a", 1))).json()["order_id"] for _ in range(2)]
    client.post("/orders", json=order_body(("prod-a", 1), customer_email="other@example.com"))

    resp = client.get("/orders", params={"email": " SITI@example.com "})
    assert resp.status_code == 200
    assert [o["order_id"] for o in resp.json()] == [mine[1], mine[0]]

    assert client.get("/orders", params={"email": "nobody@example.com"}).json() == []
    missing = client.get("/orders")
    assert missing.status_code == 400
    assert missing.json()["error"] == "validation_error"


def test_email_is_normalized(client, seed_product, order_body):
    seed_product()
    resp = client.post("/orders", json=order_body(customer_email="  Siti@Example.COM "))
    assert resp.status_code == 201
    assert resp.json()["customer_email"] == "siti@example.com"


def test_duplicate_lines_are_merged(client, store, seed_product, order_body):
    seed_product("prod-a", stock=5)
    resp = client.post("/orders", json=order_body(("prod-a", 1), ("prod-a", 2)))
    assert resp.status_code == 201
    items = resp.json()["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 3
    assert store.products["prod-a"]["stock"] == 2


@pytest.mark.parametrize(
    "seed_kwargs, expected_code",
    [
        ({"is_active": False}, "validation_error"),
        ({"currency": "USD"}, "validation_error"),
        ({"stock": 1}, "insufficient_stock"),
    ],
)
def test_unpayable_cart_is_rejected(client, store, seed_product, order_body, seed_kwargs, expected_code):
    seed_product("prod-a", **seed_kwargs)
    resp = client.post("/orders", json=order_body(("prod-a", 2)))
    assert resp.status_code == 400
    assert resp.json()["error"] == expected_code
    assert store.orders == {}


def test_unknown_product_is_rejected(client, order_body):
    resp = client.post("/orders", json=order_body(("nope", 1)))
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_empty_cart_is_rejected(client, order_body):
    resp = client.post("/orders", json=order_body(items=[]))
    assert resp.status_code == 400


def test_zero_quantity_fails_request_validation(client, seed_product, order_body):
    seed_product()
    resp = client.post("/orders", json=order_body(("prod-a", 0)))
    assert resp.status_code == 422


# ---------- Totals ----------

def test_tax_rounds_half_up_to_currency_unit():
    idr = compute_totals(Decimal("10005"), "IDR")
    assert idr["tax_amount"] == Decimal("1101")  # 1100.55
    assert idr["total_amount"] == Decimal("10005") + Decimal("1101") + Decimal("15000") + Decimal("5000")

    assert quantize(Decimal("1.1055"), "USD") == Decimal("1.11")
    assert quantize(Decimal("0.5"), "IDR") == Decimal("1")


def test_store_currency_is_checked_at_startup(monkeypatch):
    monkeypatch.setenv("STORE_CURRENCY", " php ")
    assert Settings().store_currency is Currency.PHP

    monkeypatch.setenv("STORE_CURRENCY", "EUR")
    with pytest.raises(pydantic.ValidationError):
        Settings()


# ---------- Concurrency & compensation ----------

def test_last_unit_sells_once(store, seed_product, order_body):
    seed_product("prod-a", stock=1)
    body = CreateOrderBody(**order_body(("prod-a", 1)))

    async def _race():
        return await asyncio.gather(create_order(body), create_order(body), return_exceptions=True)

    results = run(_race())
    orders = [r for r in results if isinstance(r, dict)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(orders) == 1
    assert len(errors) == 1 and isinstance(errors[0], InsufficientStock)
    assert store.products["prod-a"]["stock"] == 0


def test_failed_reservation_restores_earlier_lines(store, seed_product, order_body, monkeypatch):
    seed_product("prod-a", stock=5)
    seed_product("prod-b", stock=1)

    # prod-b looks available when priced but is gone by the time it is reserved
    real_get_products = store.get_products

    async def _stale_get_products(ids):
        rows = await real_get_products(ids)
        rows["prod-b"]["stock"] = 99
        return rows

    monkeypatch.setattr(store, "get_products", _stale_get_products)

    with pytest.raises(InsufficientStock) as exc:
        run(create_order(CreateOrderBody(**order_body(("prod-a", 2), ("prod-b", 2)))))
    assert exc.value.product_id == "prod-b"
    assert store.products["prod-a"]["stock"] == 5
    assert store.products["prod-b"]["stock"] == 1
    assert store.orders == {}


def test_failed_insert_restores_stock(store, seed_product, order_body, monkeypatch):
    seed_product("prod-a", stock=5)

    async def _boom(order):
        raise RuntimeError("db down")

    monkeypatch.setattr(store, "insert_order", _boom)

    with pytest.raises(RuntimeError):
        run(create_order(CreateOrderBody(**order_body(("prod-a", 3)))))
    assert store.products["prod-a"]["stock"] == 5


def test_reservation_error_restores_earlier_lines(store, seed_product, order_body, monkeypatch):
    seed_product("prod-a", stock=5)
    seed_product("prod-b", stock=5)
    real_reserve = store.reserve_stock

    async def _flaky_reserve(product_id, quantity):
        if product_id == "prod-b":
            raise RuntimeError("connection reset")
        return await real_reserve(product_id, quantity)

    monkeypatch.setattr(store, "reserve_stock", _flaky_reserve)

    with pytest.raises(RuntimeError):
        run(create_order(CreateOrderBody(**order_body(("prod-a", 2), ("prod-b", 1)))))
    assert store.products["prod-a"]["stock"] == 5
    assert store.products["prod-b"]["stock"] == 5
    assert store.orders == {}


def test_one_failed_release_does_not_block_the_others(store, seed_product, order_body, monkeypatch):
    seed_product("prod-a", stock=5)
    seed_product("prod-b", stock=5)
    real_release = store.release_stock

    async def _flaky_release(product_id, quantity):
        if product_id == "prod-a":
            raise RuntimeError("connection reset")
        await real_release(product_id, quantity)

    async def _boom(order):
        raise RuntimeError("db down")

    monkeypatch.setattr(store, "release_stock", _flaky_release)
    monkeypatch.setattr(store, "insert_order", _boom)

    with pytest.raises(RuntimeError, match="db down"):
        run(create_order(CreateOrderBody(**order_body(("prod-a", 2), ("prod-b", 1)))))
    assert store.products["prod-a"]["stock"] == 3
    assert store.products["prod-b"]["stock"] == 5


def test_empty_items_raise_validation_error(order_body):
    with pytest.raises(ValidationError):
        run(create_order(CreateOrderBody(**order_body(items=[]))))
