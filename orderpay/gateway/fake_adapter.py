"""Configurable in-process invoice provider for development and tests.

Invoices live in a dict; tests move them along with ``set_status`` and make
the provider fail with ``configure(should_succeed=False)``.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..errors import ProviderUnavailable
from ..utils.clock import now
from .port import InvoiceProvider, InvoiceResult


class FakeProvider(InvoiceProvider):
    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.timed_out: bool = False
        self.failure_reason: str = "provider unavailable"
        self.invoices: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "provider unavailable",
        timed_out: bool = False,
    ) -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.timed_out = timed_out

    def set_status(self, invoice_id: str, status: str, paid_at=None) -> None:
        invoice = self.invoices[invoice_id]
        invoice["status"] = status
        invoice["paid_at"] = paid_at

    def _fail(self) -> None:
        raise ProviderUnavailable(self.failure_reason, timed_out=self.timed_out)

    def _result(self, invoice: Dict[str, Any]) -> InvoiceResult:
        return InvoiceResult(
            invoice_id=invoice["id"],
            external_id=invoice["external_id"],
            status=invoice["status"],
            invoice_url=invoice["invoice_url"],
            expiry_date=invoice["expiry_date"],
            paid_at=invoice.get("paid_at"),
            raw={k: v for k, v in invoice.items() if k != "expiry_date" and k != "paid_at"},
        )

    async def create_invoice(self, payload: Dict[str, Any]) -> InvoiceResult:
        self.calls.append({"method": "create_invoice", "payload": payload})
        if not self.should_succeed:
            self._fail()
        invoice_id = f"inv_fake_{uuid4().hex[:12]}"
        duration = int(payload.get("invoice_duration") or 86400)
        self.invoices[invoice_id] = {
            "id": invoice_id,
            "external_id": payload.get("external_id"),
            "amount": payload.get("amount"),
            "currency": payload.get("currency"),
            "status": "PENDING",
            "invoice_url": f"https://checkout.fake/web/{invoice_id}",
            "expiry_date": now() + timedelta(seconds=duration),
            "paid_at": None,
        }
        return self._result(self.invoices[invoice_id])

    async def get_invoice(self, invoice_id: str) -> InvoiceResult:
        self.calls.append({"method": "get_invoice", "invoice_id": invoice_id})
        if not self.should_succeed:
            self._fail()
        invoice: Optional[Dict[str, Any]] = self.invoices.get(invoice_id)
        if invoice is None:
            raise ProviderUnavailable(f"invoice {invoice_id} not found")
        return self._result(invoice)
