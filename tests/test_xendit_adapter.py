"""Xendit adapter against a mocked HTTP transport."""
from __future__ import annotations

import base64
import json

import httpx
import pytest

from orderpay.errors import ProviderUnavailable
from orderpay.gateway.xendit_adapter import XenditProvider
from tests.conftest import run

INVOICE = {
    "id": "inv_123",
    "external_id": "order-1700000000000-abc",
    "status": "PENDING",
    "amount": 42200,
    "invoice_url": "https://checkout.xendit.co/web/inv_123",
    "expiry_date": "2025-01-03T03:04:05.000Z",
}


def _provider(handler, **kwargs):
    return XenditProvider(
        secret_key=kwargs.pop("secret_key", "xnd_test_secret"),
        base_url="https://api.xendit.test",
        timeout=1,
        transport=httpx.MockTransport(handler),
    )


def test_create_invoice_posts_with_basic_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=INVOICE)

    result = run(_provider(handler).create_invoice({"external_id": INVOICE["external_id"], "amount": 42200}))

    assert seen["method"] == "POST"
    assert seen["path"] == "/v2/invoices"
    assert seen["auth"] == "Basic " + base64.b64encode(b"xnd_test_secret:").decode()
    assert seen["body"]["amount"] == 42200
    assert result.invoice_id == "inv_123"
    assert result.invoice_url == INVOICE["invoice_url"]
    assert result.expiry_date.year == 2025 and result.expiry_date.tzinfo is not None


def test_get_invoice_reads_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/invoices/inv_123"
        return httpx.Response(200, json={**INVOICE, "status": "PAID", "paid_at": "2025-01-02T10:00:00Z"})

    result = run(_provider(handler).get_invoice("inv_123"))
    assert result.status == "PAID"
    assert result.paid_at.hour == 10


def test_error_status_is_provider_unavailable():
    def handler(request):
        return httpx.Response(400, json={"error_code": "API_VALIDATION_ERROR", "message": "amount invalid"})

    with pytest.raises(ProviderUnavailable) as exc:
        run(_provider(handler).create_invoice({}))
    assert exc.value.status_code == 502
    assert "400" in exc.value.detail


def test_timeout_maps_to_504():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderUnavailable) as exc:
        run(_provider(handler).get_invoice("inv_123"))
    assert exc.value.timed_out is True
    assert exc.value.status_code == 504


def test_transport_error_is_provider_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderUnavailable) as exc:
        run(_provider(handler).get_invoice("inv_123"))
    assert exc.value.status_code == 502


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"<html>oops</html>"),
        httpx.Response(200, json={"status": "PENDING"}),
        httpx.Response(200, json={**INVOICE, "invoice_url": None}),
    ],
)
def test_malformed_body_is_provider_unavailable(response):
    with pytest.raises(ProviderUnavailable):
        run(_provider(lambda request: response).create_invoice({}))


def test_missing_secret_key_fails_before_any_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=INVOICE)

    with pytest.raises(ProviderUnavailable):
        run(_provider(handler, secret_key="").create_invoice({}))
    assert calls == []
