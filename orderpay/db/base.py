"""Storage port for catalog, orders, payment requests and the reconciliation ledger.

Every status mutation is expressed as a conditional update so that racing
callers (two webhook deliveries, a webhook and a poll, two checkouts for the
last unit) are resolved by the store itself: the loser sees ``False`` and
re-reads the current state instead of overwriting it.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class PaymentOutcomeResult:
    """What a conditional payment transition actually changed."""

    request_updated: bool
    order_updated: bool
    payment: Optional[Dict[str, Any]]
    order: Optional[Dict[str, Any]]


class Store(ABC):
    async def open(self) -> None:
        """Acquire resources (pools, schema). Called on application startup."""

    async def close(self) -> None:
        """Release resources. Called on application shutdown."""

    # -- catalog ---------------------------------------------------------------
    @abstractmethod
    async def upsert_product(self, product: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def list_products(self, active_only: bool = True) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_products(self, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ...

    @abstractmethod
    async def reserve_stock(self, product_id: str, quantity: int) -> bool:
        """Decrement stock only if ``stock >= quantity``; report whether it happened."""

    @abstractmethod
    async def release_stock(self, product_id: str, quantity: int) -> None:
        ...

    # -- orders ----------------------------------------------------------------
    @abstractmethod
    async def insert_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list_orders(
        self, status: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> Tuple[List[Dict[str, Any]], int]:
        ...

    @abstractmethod
    async def list_orders_by_email(self, email: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Newest first."""
        ...

    @abstractmethod
    async def attach_payment_request(self, order_id: str, invoice_id: str) -> None:
        ...

    @abstractmethod
    async def transition_order(self, order_id: str, from_statuses: Iterable[str], to_status: str) -> bool:
        ...

    # -- payment requests ------------------------------------------------------
    @abstractmethod
    async def insert_payment_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a new pending request; raise ``DuplicatePendingRequest`` if one is already pending."""

    @abstractmethod
    async def get_payment_request(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_pending_payment_request(self, order_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_latest_payment_request(self, order_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list_pending_payment_requests(
        self, limit: int = 50, updated_before: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def retire_payment_request(self, invoice_id: str, now: datetime) -> bool:
        """Move a pending request whose expiry has passed to ``expired`` (order untouched)."""

    @abstractmethod
    async def apply_payment_outcome(
        self,
        invoice_id: str,
        status: str,
        paid_at: Optional[datetime],
        raw_payload: Optional[Dict[str, Any]],
    ) -> PaymentOutcomeResult:
        """Atomically move a pending request to ``status`` and carry the order along.

        ``success`` moves the order ``pending -> paid``. ``failed``/``expired``
        move it only when this invoice is the order's active request.
        """

    @abstractmethod
    async def mark_payment_refunded(self, order_id: str) -> bool:
        ...

    # -- reconciliation ledger -------------------------------------------------
    @abstractmethod
    async def record_event(self, event: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def list_events(self, order_id: str) -> List[Dict[str, Any]]:
        ...


def money(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))
