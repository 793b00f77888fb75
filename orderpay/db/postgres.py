"""Postgres-backed store (asyncpg).

Conditional updates carry the concurrency guarantees:
``stock >= $2`` for reservations, ``status = 'pending'`` for every payment
transition, and the partial unique index ``payment_requests_one_pending``
for the one-pending-request-per-order rule.
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

import asyncpg

from ..errors import DuplicatePendingRequest
from . import get_pool
from .base import PaymentOutcomeResult, Store

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS products (
    id          text PRIMARY KEY,
    name        text NOT NULL,
    description text NOT NULL DEFAULT '',
    price       numeric(14, 2) NOT NULL CHECK (price >= 0),
    currency    text NOT NULL DEFAULT 'IDR',
    image_url   text NOT NULL DEFAULT '',
    stock       integer NOT NULL DEFAULT 0 CHECK (stock >= 0),
    is_active   boolean NOT NULL DEFAULT true,
    category    text NOT NULL DEFAULT 'general',
    created_at  timestamptz NOT NULL DEFAULT now(),
    updated_at  timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS orders (
    id                 bigserial PRIMARY KEY,
    order_id           text NOT NULL UNIQUE,
    customer_email     text NOT NULL,
    customer_name      text NOT NULL,
    customer_phone     text,
    shipping_address   jsonb,
    items              jsonb NOT NULL,
    subtotal           numeric(14, 2) NOT NULL,
    tax_amount         numeric(14, 2) NOT NULL,
    delivery_fee       numeric(14, 2) NOT NULL,
    admin_fee          numeric(14, 2) NOT NULL,
    total_amount       numeric(14, 2) NOT NULL CHECK (total_amount >= 0),
    currency           text NOT NULL,
    status             text NOT NULL DEFAULT 'pending',
    payment_request_id text,
    notes              text,
    created_at         timestamptz NOT NULL DEFAULT now(),
    updated_at         timestamptz NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS orders_status_created_idx ON orders (status, created_at DESC);
CREATE INDEX IF NOT EXISTS orders_email_created_idx ON orders (customer_email, created_at DESC);

CREATE TABLE IF NOT EXISTS payment_requests (
    id             bigserial PRIMARY KEY,
    order_id       text NOT NULL REFERENCES orders (order_id),
    invoice_id     text NOT NULL UNIQUE,
    amount         numeric(14, 2) NOT NULL CHECK (amount >= 0),
    currency       text NOT NULL,
    payment_method text NOT NULL DEFAULT 'invoice',
    status         text NOT NULL DEFAULT 'pending',
    payment_url    text,
    expiry_date    timestamptz,
    paid_at        timestamptz,
    raw_payload    jsonb,
    created_at     timestamptz NOT NULL DEFAULT now(),
    updated_at     timestamptz NOT NULL DEFAULT now()
);
CREATE UNIQUE INDEX IF NOT EXISTS payment_requests_one_pending
    ON payment_requests (order_id) WHERE status = 'pending';
CREATE INDEX IF NOT EXISTS payment_requests_status_updated_idx
    ON payment_requests (status, updated_at);

CREATE TABLE IF NOT EXISTS reconciliation_events (
    id              bigserial PRIMARY KEY,
    invoice_id      text NOT NULL,
    order_id        text,
    reported_status text,
    mapped_status   text,
    source          text NOT NULL,
    outcome         text NOT NULL,
    detail          text,
    received_at     timestamptz NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS reconciliation_events_order_idx
    ON reconciliation_events (order_id, received_at);
"""


def _json(value: Any) -> Optional[str]:
    # Decimals inside line items are stored as strings and revived on read.
    return None if value is None else json.dumps(value, default=str)


def _load(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


def _product_row_to_dict(row) -> Dict[str, Any]:
    return dict(row)


def _order_row_to_dict(row) -> Dict[str, Any]:
    """Convert an orders row into the record shape services expect."""
    data = dict(row)
    data["shipping_address"] = _load(row["shipping_address"])
    items = _load(row["items"]) or []
    for item in items:
        item["unit_price"] = Decimal(str(item["unit_price"]))
        item["total_price"] = Decimal(str(item["total_price"]))
    data["items"] = items
    return data


def _request_row_to_dict(row) -> Dict[str, Any]:
    data = dict(row)
    data["raw_payload"] = _load(row["raw_payload"])
    return data


class PostgresStore(Store):
    async def open(self) -> None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def close(self) -> None:
        from . import close_pool
        await close_pool()

    # -- catalog ---------------------------------------------------------------
    async def upsert_product(self, product: Dict[str, Any]) -> Dict[str, Any]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO products (id, name, description, price, currency, image_url,
                                      stock, is_active, category)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (id) DO UPDATE SET
                    name        = EXCLUDED.name,
                    description = EXCLUDED.description,
                    price       = EXCLUDED.price,
                    currency    = EXCLUDED.currency,
                    image_url   = EXCLUDED.image_url,
                    stock       = EXCLUDED.stock,
                    is_active   = EXCLUDED.is_active,
                    category    = EXCLUDED.category,
                    updated_at  = now()
                RETURNING *
                """,
                product["id"],
                product["name"],
                product.get("description", ""),
                Decimal(str(product["price"])),
                product.get("currency", "IDR"),
                product.get("image_url", ""),
                int(product.get("stock", 0)),
                bool(product.get("is_active", True)),
                product.get("category", "general"),
            )
        return _product_row_to_dict(row)

    async def list_products(self, active_only: bool = True) -> List[Dict[str, Any]]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            if active_only:
                rows = await conn.fetch("SELECT * FROM products WHERE is_active ORDER BY name")
            else:
                rows = await conn.fetch("SELECT * FROM products ORDER BY name")
        return [_product_row_to_dict(r) for r in rows]

    async def get_products(self, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ids = list(ids)
        if not ids:
            return {}
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM products WHERE id = ANY($1::text[])", ids)
        return {r["id"]: _product_row_to_dict(r) for r in rows}

    async def reserve_stock(self, product_id: str, quantity: int) -> bool:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE products SET stock = stock - $2, updated_at = now()
                WHERE id = $1 AND stock >= $2
                """,
                product_id,
                quantity,
            )
        # result looks like "UPDATE 1"
        return int(result.split()[-1]) == 1

    async def release_stock(self, product_id: str, quantity: int) -> None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                "UPDATE products SET stock = stock + $2, updated_at = now() WHERE id = $1",
                product_id,
                quantity,
            )

    # -- orders ----------------------------------------------------------------
    async def insert_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO orders (order_id, customer_email, customer_name, customer_phone,
                                    shipping_address, items, subtotal, tax_amount, delivery_fee,
                                    admin_fee, total_amount, currency, status, notes)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7, $8, $9, $10, $11, $12, $13, $14)
                RETURNING *
                """,
                order["order_id"],
                order["customer_email"],
                order["customer_name"],
                order.get("customer_phone"),
                _json(order.get("shipping_address")),
                _json(order["items"]),
                order["subtotal"],
                order["tax_amount"],
                order["delivery_fee"],
                order["admin_fee"],
                order["total_amount"],
                order["currency"],
                order["status"],
                order.get("notes"),
            )
        return _order_row_to_dict(row)

    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM orders WHERE order_id = $1", order_id)
        return _order_row_to_dict(row) if row else None

    async def list_orders(
        self, status: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> Tuple[List[Dict[str, Any]], int]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            if status:
                rows = await conn.fetch(
                    "SELECT * FROM orders WHERE status = $1 ORDER BY created_at DESC, id DESC LIMIT $2 OFFSET $3",
                    status, limit, offset,
                )
                total = await conn.fetchval("SELECT count(*) FROM orders WHERE status = $1", status)
            else:
                rows = await conn.fetch(
                    "SELECT * FROM orders ORDER BY created_at DESC, id DESC LIMIT $1 OFFSET $2",
                    limit, offset,
                )
                total = await conn.fetchval("SELECT count(*) FROM orders")
        return [_order_row_to_dict(r) for r in rows], int(total)

    async def list_orders_by_email(self, email: str, limit: int = 50) -> List[Dict[str, Any]]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM orders WHERE customer_email = $1 ORDER BY created_at DESC, id DESC LIMIT $2",
                email, limit,
            )
        return [_order_row_to_dict(r) for r in rows]

    async def attach_payment_request(self, order_id: str, invoice_id: str) -> None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                "UPDATE orders SET payment_request_id = $2, updated_at = now() WHERE order_id = $1",
                order_id,
                invoice_id,
            )

    async def transition_order(self, order_id: str, from_statuses: Iterable[str], to_status: str) -> bool:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE orders SET status = $3, updated_at = now()
                WHERE order_id = $1 AND status = ANY($2::text[])
                """,
                order_id,
                list(from_statuses),
                to_status,
            )
        return int(result.split()[-1]) == 1

    # -- payment requests ------------------------------------------------------
    async def insert_payment_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        pool = await get_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO payment_requests (order_id, invoice_id, amount, currency,
                                                  payment_method, status, payment_url,
                                                  expiry_date, raw_payload)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb)
                    RETURNING *
                    """,
                    request["order_id"],
                    request["invoice_id"],
                    request["amount"],
                    request["currency"],
                    request.get("payment_method", "invoice"),
                    request.get("status", "pending"),
                    request.get("payment_url"),
                    request.get("expiry_date"),
                    _json(request.get("raw_payload")),
                )
        except asyncpg.exceptions.UniqueViolationError as exc:
            if getattr(exc, "constraint_name", None) == "payment_requests_one_pending":
                raise DuplicatePendingRequest(request["order_id"]) from exc
            raise
        return _request_row_to_dict(row)

    async def get_payment_request(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM payment_requests WHERE invoice_id = $1", invoice_id)
        return _request_row_to_dict(row) if row else None

    async def get_pending_payment_request(self, order_id: str) -> Optional[Dict[str, Any]]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM payment_requests WHERE order_id = $1 AND status = 'pending'",
                order_id,
            )
        return _request_row_to_dict(row) if row else None

    async def get_latest_payment_request(self, order_id: str) -> Optional[Dict[str, Any]]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM payment_requests WHERE order_id = $1 ORDER BY id DESC LIMIT 1",
                order_id,
            )
        return _request_row_to_dict(row) if row else None

    async def list_pending_payment_requests(
        self, limit: int = 50, updated_before: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM payment_requests
                WHERE status = 'pending' AND ($2::timestamptz IS NULL OR updated_at < $2)
                ORDER BY updated_at
                LIMIT $1
                """,
                limit,
                updated_before,
            )
        return [_request_row_to_dict(r) for r in rows]

    async def retire_payment_request(self, invoice_id: str, now: datetime) -> bool:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE payment_requests SET status = 'expired', updated_at = $2
                WHERE invoice_id = $1 AND status = 'pending' AND expiry_date <= $2
                """,
                invoice_id,
                now,
            )
        return int(result.split()[-1]) == 1

    async def apply_payment_outcome(
        self,
        invoice_id: str,
        status: str,
        paid_at: Optional[datetime],
        raw_payload: Optional[Dict[str, Any]],
    ) -> PaymentOutcomeResult:
        pool = await get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                pr = await conn.fetchrow(
                    """
                    UPDATE payment_requests
                    SET status      = $2::text,
                        paid_at     = CASE WHEN $2::text = 'success'
                                           THEN COALESCE($3::timestamptz, now())
                                           ELSE paid_at END,
                        raw_payload = $4::jsonb,
                        updated_at  = now()
                    WHERE invoice_id = $1 AND status = 'pending'
                    RETURNING *
                    """,
                    invoice_id,
                    status,
                    paid_at,
                    _json(raw_payload),
                )
                if pr is None:
                    current = await conn.fetchrow(
                        "SELECT * FROM payment_requests WHERE invoice_id = $1", invoice_id
                    )
                    if current is None:
                        return PaymentOutcomeResult(False, False, None, None)
                    order = await conn.fetchrow(
                        "SELECT * FROM orders WHERE order_id = $1", current["order_id"]
                    )
                    return PaymentOutcomeResult(
                        False,
                        False,
                        _request_row_to_dict(current),
                        _order_row_to_dict(order) if order else None,
                    )

                if status == "success":
                    order = await conn.fetchrow(
                        """
                        UPDATE orders SET status = 'paid', updated_at = now()
                        WHERE order_id = $1 AND status = 'pending'
                        RETURNING *
                        """,
                        pr["order_id"],
                    )
                else:
                    order = await conn.fetchrow(
                        """
                        UPDATE orders SET status = $2, updated_at = now()
                        WHERE order_id = $1 AND status = 'pending' AND payment_request_id = $3
                        RETURNING *
                        """,
                        pr["order_id"],
                        status,
                        invoice_id,
                    )
                order_updated = order is not None
                if order is None:
                    order = await conn.fetchrow(
                        "SELECT * FROM orders WHERE order_id = $1", pr["order_id"]
                    )
        return PaymentOutcomeResult(
            True,
            order_updated,
            _request_row_to_dict(pr),
            _order_row_to_dict(order) if order else None,
        )

    async def mark_payment_refunded(self, order_id: str) -> bool:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE payment_requests SET status = 'refunded', updated_at = now()
                WHERE order_id = $1 AND status = 'success'
                """,
                order_id,
            )
        return int(result.split()[-1]) >= 1

    # -- reconciliation ledger -------------------------------------------------
    async def record_event(self, event: Dict[str, Any]) -> None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO reconciliation_events (invoice_id, order_id, reported_status,
                                                   mapped_status, source, outcome, detail)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                event["invoice_id"],
                event.get("order_id"),
                event.get("reported_status"),
                event.get("mapped_status"),
                event["source"],
                event["outcome"],
                event.get("detail"),
            )

    async def list_events(self, order_id: str) -> List[Dict[str, Any]]:
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM reconciliation_events WHERE order_id = $1 ORDER BY received_at, id",
                order_id,
            )
        return [dict(r) for r in rows]
