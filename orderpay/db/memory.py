"""In-memory store for local runs and tests.

Each method finishes without awaiting in between its read and its write, so
on a single event loop the conditional updates are as atomic as their SQL
counterparts in ``postgres.py``.
"""
from __future__ import annotations

import copy
import itertools
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import DuplicatePendingRequest
from ..utils.clock import now as _now
from .base import PaymentOutcomeResult, Store, money


class MemoryStore(Store):
    def __init__(self) -> None:
        self.products: Dict[str, Dict[str, Any]] = {}
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.payment_requests: Dict[str, Dict[str, Any]] = {}
        self.events: List[Dict[str, Any]] = []
        self._order_seq = itertools.count(1)
        self._request_seq = itertools.count(1)

    # -- catalog ---------------------------------------------------------------
    async def upsert_product(self, product: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        existing = self.products.get(product["id"])
        row = {**(existing or {"created_at": now}), **copy.deepcopy(product), "updated_at": now}
        row["price"] = money(row["price"])
        self.products[row["id"]] = row
        return copy.deepcopy(row)

    async def list_products(self, active_only: bool = True) -> List[Dict[str, Any]]:
        rows = [p for p in self.products.values() if p.get("is_active", True) or not active_only]
        return [copy.deepcopy(p) for p in sorted(rows, key=lambda p: p["name"])]

    async def get_products(self, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        return {i: copy.deepcopy(self.products[i]) for i in ids if i in self.products}

    async def reserve_stock(self, product_id: str, quantity: int) -> bool:
        product = self.products.get(product_id)
        if product is None or product["stock"] < quantity:
            return False
        product["stock"] -= quantity
        product["updated_at"] = _now()
        return True

    async def release_stock(self, product_id: str, quantity: int) -> None:
        product = self.products.get(product_id)
        if product is not None:
            product["stock"] += quantity
            product["updated_at"] = _now()

    # -- orders ----------------------------------------------------------------
    async def insert_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        if order["order_id"] in self.orders:
            raise ValueError(f"duplicate order_id {order['order_id']}")
        now = _now()
        row = {
            **copy.deepcopy(order),
            "id": next(self._order_seq),
            "payment_request_id": None,
            "created_at": now,
            "updated_at": now,
        }
        self.orders[row["order_id"]] = row
        return copy.deepcopy(row)

    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        row = self.orders.get(order_id)
        return copy.deepcopy(row) if row else None

    async def list_orders(
        self, status: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> Tuple[List[Dict[str, Any]], int]:
        rows = [o for o in self.orders.values() if status is None or o["status"] == status]
        rows.sort(key=lambda o: o["id"], reverse=True)
        return [copy.deepcopy(o) for o in rows[offset:offset + limit]], len(rows)

    async def list_orders_by_email(self, email: str, limit: int = 50) -> List[Dict[str, Any]]:
        rows = [o for o in self.orders.values() if o["customer_email"] == email]
        rows.sort(key=lambda o: o["id"], reverse=True)
        return [copy.deepcopy(o) for o in rows[:limit]]

    async def attach_payment_request(self, order_id: str, invoice_id: str) -> None:
        row = self.orders[order_id]
        row["payment_request_id"] = invoice_id
        row["updated_at"] = _now()

    async def transition_order(self, order_id: str, from_statuses: Iterable[str], to_status: str) -> bool:
        row = self.orders.get(order_id)
        if row is None or row["status"] not in set(from_statuses):
            return False
        row["status"] = to_status
        row["updated_at"] = _now()
        return True

    # -- payment requests ------------------------------------------------------
    async def insert_payment_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        for pr in self.payment_requests.values():
            if pr["order_id"] == request["order_id"] and pr["status"] == "pending":
                raise DuplicatePendingRequest(request["order_id"])
        if request["invoice_id"] in self.payment_requests:
            raise ValueError(f"duplicate invoice_id {request['invoice_id']}")
        now = _now()
        row = {
            "paid_at": None,
            **copy.deepcopy(request),
            "id": next(self._request_seq),
            "created_at": now,
            "updated_at": now,
        }
        self.payment_requests[row["invoice_id"]] = row
        return copy.deepcopy(row)

    async def get_payment_request(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        row = self.payment_requests.get(invoice_id)
        return copy.deepcopy(row) if row else None

    async def get_pending_payment_request(self, order_id: str) -> Optional[Dict[str, Any]]:
        for pr in self.payment_requests.values():
            if pr["order_id"] == order_id and pr["status"] == "pending":
                return copy.deepcopy(pr)
        return None

    async def get_latest_payment_request(self, order_id: str) -> Optional[Dict[str, Any]]:
        rows = [pr for pr in self.payment_requests.values() if pr["order_id"] == order_id]
        if not rows:
            return None
        return copy.deepcopy(max(rows, key=lambda pr: pr["id"]))

    async def list_pending_payment_requests(
        self, limit: int = 50, updated_before: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        rows = [
            pr for pr in self.payment_requests.values()
            if pr["status"] == "pending"
            and (updated_before is None or pr["updated_at"] < updated_before)
        ]
        rows.sort(key=lambda pr: pr["updated_at"])
        return [copy.deepcopy(pr) for pr in rows[:limit]]

    async def retire_payment_request(self, invoice_id: str, now: datetime) -> bool:
        pr = self.payment_requests.get(invoice_id)
        if pr is None or pr["status"] != "pending":
            return False
        if pr.get("expiry_date") is None or pr["expiry_date"] > now:
            return False
        pr["status"] = "expired"
        pr["updated_at"] = now
        return True

    async def apply_payment_outcome(
        self,
        invoice_id: str,
        status: str,
        paid_at: Optional[datetime],
        raw_payload: Optional[Dict[str, Any]],
    ) -> PaymentOutcomeResult:
        pr = self.payment_requests.get(invoice_id)
        if pr is None:
            return PaymentOutcomeResult(False, False, None, None)
        order = self.orders.get(pr["order_id"])

        if pr["status"] != "pending":
            return PaymentOutcomeResult(
                False, False, copy.deepcopy(pr), copy.deepcopy(order) if order else None
            )

        now = _now()
        pr["status"] = status
        pr["raw_payload"] = copy.deepcopy(raw_payload)
        pr["updated_at"] = now
        if status == "success":
            pr["paid_at"] = paid_at or now

        order_updated = False
        if order is not None and order["status"] == "pending":
            if status == "success":
                order["status"] = "paid"
                order_updated = True
            elif order.get("payment_request_id") == invoice_id:
                order["status"] = status
                order_updated = True
            if order_updated:
                order["updated_at"] = now

        return PaymentOutcomeResult(
            True, order_updated, copy.deepcopy(pr), copy.deepcopy(order) if order else None
        )

    async def mark_payment_refunded(self, order_id: str) -> bool:
        for pr in self.payment_requests.values():
            if pr["order_id"] == order_id and pr["status"] == "success":
                pr["status"] = "refunded"
                pr["updated_at"] = _now()
                return True
        return False

    # -- reconciliation ledger -------------------------------------------------
    async def record_event(self, event: Dict[str, Any]) -> None:
        self.events.append({"received_at": _now(), **copy.deepcopy(event)})

    async def list_events(self, order_id: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(e) for e in self.events if e.get("order_id") == order_id]
