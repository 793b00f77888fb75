"""Invoice provider port.

Adapters talk to a hosted-invoice payment provider: create an invoice for an
order and read an invoice's current status back. Any failure to obtain a
usable answer from the provider surfaces as ``ProviderUnavailable``.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class InvoiceResult:
    """The provider's view of one invoice."""

    invoice_id: str
    external_id: Optional[str]
    status: str
    invoice_url: Optional[str] = None
    expiry_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class InvoiceProvider(ABC):
    @abstractmethod
    async def create_invoice(self, payload: Dict[str, Any]) -> InvoiceResult:
        """Create a hosted invoice. ``payload`` uses the provider's wire field names."""
        ...

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> InvoiceResult:
        """Fetch the current state of an invoice."""
        ...
