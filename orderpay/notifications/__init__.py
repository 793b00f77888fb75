"""Notifier registry and best-effort dispatch.

``dispatch()`` is only called once the state change it announces has been
committed. Failures and timeouts are logged and never propagate.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from ..settings import settings
from ..utils.logging import logger
from .port import Notifier

_current_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _current_notifier
    if _current_notifier is None:
        from .logging_notifier import LoggingNotifier

        _current_notifier = LoggingNotifier()
    return _current_notifier


def set_notifier(notifier: Notifier) -> None:
    """Override the active notifier (useful for tests)."""
    global _current_notifier
    _current_notifier = notifier


def reset_notifier() -> None:
    global _current_notifier
    _current_notifier = None


async def dispatch(kind: str, order: Dict[str, Any]) -> bool:
    """Send ``kind`` ("checkout" or "payment_success") for ``order``; report whether it went out."""
    notifier = get_notifier()
    send = notifier.notify_checkout if kind == "checkout" else notifier.notify_payment_success
    try:
        await asyncio.wait_for(send(order), timeout=settings.notify_timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning("notification_timeout", kind=kind, order_id=order.get("order_id"))
        return False
    except Exception:
        logger.exception("notification_failed", kind=kind, order_id=order.get("order_id"))
        return False
    return True
