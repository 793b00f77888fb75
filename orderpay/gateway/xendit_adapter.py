"""Xendit hosted-invoice adapter (``/v2/invoices``)."""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..errors import ProviderUnavailable
from ..settings import settings
from ..utils.clock import parse_timestamp
from ..utils.logging import logger
from .port import InvoiceProvider, InvoiceResult


def _to_result(data: Dict[str, Any]) -> InvoiceResult:
    return InvoiceResult(
        invoice_id=str(data["id"]),
        external_id=data.get("external_id"),
        status=str(data.get("status") or "").upper(),
        invoice_url=data.get("invoice_url"),
        expiry_date=parse_timestamp(data.get("expiry_date")),
        paid_at=parse_timestamp(data.get("paid_at")),
        raw=data,
    )


class XenditProvider(InvoiceProvider):
    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.xendit_secret_key
        self.base_url = (base_url or settings.xendit_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self._transport = transport

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.secret_key:
            raise ProviderUnavailable("XENDIT_SECRET_KEY is not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.secret_key, ""),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as exc:
            logger.warning("provider_timeout", method=method, path=path)
            raise ProviderUnavailable(f"Xendit request timed out: {exc}", timed_out=True) from exc
        except httpx.HTTPStatusError as exc:
            logger.warning("provider_error", method=method, path=path, status_code=exc.response.status_code)
            raise ProviderUnavailable(
                f"Xendit API error {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("provider_unreachable", method=method, path=path, error=str(exc))
            raise ProviderUnavailable(f"Xendit request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderUnavailable("Xendit returned a non-JSON body") from exc

        if not isinstance(data, dict) or not data.get("id"):
            raise ProviderUnavailable("Xendit returned an invoice without an id")
        return data

    async def create_invoice(self, payload: Dict[str, Any]) -> InvoiceResult:
        data = await self._request("POST", "/v2/invoices", payload)
        if not data.get("invoice_url"):
            raise ProviderUnavailable("Xendit returned an invoice without invoice_url")
        return _to_result(data)

    async def get_invoice(self, invoice_id: str) -> InvoiceResult:
        data = await self._request("GET", f"/v2/invoices/{invoice_id}")
        return _to_result(data)
