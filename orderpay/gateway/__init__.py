"""Invoice provider factory.

``get_provider()`` builds the adapter named by ``PROVIDER_BACKEND``
(``xendit`` or ``fake``); ``set_provider()`` swaps it out in tests.
"""
from __future__ import annotations

from typing import Optional

from ..settings import settings
from .port import InvoiceProvider, InvoiceResult

_current_provider: Optional[InvoiceProvider] = None


def get_provider() -> InvoiceProvider:
    global _current_provider
    if _current_provider is None:
        backend = (settings.provider_backend or "xendit").lower()
        if backend == "fake":
            from .fake_adapter import FakeProvider

            _current_provider = FakeProvider()
        elif backend == "xendit":
            from .xendit_adapter import XenditProvider

            _current_provider = XenditProvider()
        else:
            raise RuntimeError(f"Unknown PROVIDER_BACKEND: {settings.provider_backend!r}")
    return _current_provider


def set_provider(provider: InvoiceProvider) -> None:
    """Override the active provider (useful for tests)."""
    global _current_provider
    _current_provider = provider


def reset_provider() -> None:
    global _current_provider
    _current_provider = None


__all__ = ["InvoiceProvider", "InvoiceResult", "get_provider", "set_provider", "reset_provider"]
