"""Error taxonomy shared by checkout, invoicing and reconciliation.

Each error carries the HTTP status it maps to; ``main.py`` installs a single
handler that renders them as ``{"error": code, "detail": message}``.
"""
from __future__ import annotations


class OrderPayError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class ValidationError(OrderPayError):
    status_code = 400
    code = "validation_error"


class InsufficientStock(OrderPayError):
    status_code = 400
    code = "insufficient_stock"

    def __init__(self, detail: str = "", product_id: str | None = None):
        super().__init__(detail)
        self.product_id = product_id


class OrderNotPayable(OrderPayError):
    status_code = 409
    code = "order_not_payable"


class InvalidTransition(OrderPayError):
    status_code = 409
    code = "invalid_transition"


class ProviderUnavailable(OrderPayError):
    status_code = 502
    code = "provider_unavailable"

    def __init__(self, detail: str = "", timed_out: bool = False):
        super().__init__(detail)
        self.timed_out = timed_out
        if timed_out:
            self.status_code = 504


class Unauthorized(OrderPayError):
    status_code = 401
    code = "unauthorized"


class NotFound(OrderPayError):
    status_code = 404
    code = "not_found"


class DuplicatePendingRequest(Exception):
    """Raised by a store when a second pending payment request is inserted for one order."""
