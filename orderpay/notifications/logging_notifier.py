from __future__ import annotations

from typing import Any, Dict

from ..utils.logging import logger
from .port import Notifier


class LoggingNotifier(Notifier):
    """Default notifier: writes a structured log line per message."""

    async def notify_checkout(self, order: Dict[str, Any]) -> None:
        logger.info(
            "notify_checkout",
            order_id=order["order_id"],
            customer_email=order.get("customer_email"),
            total_amount=str(order.get("total_amount")),
            currency=order.get("currency"),
        )

    async def notify_payment_success(self, order: Dict[str, Any]) -> None:
        logger.info(
            "notify_payment_success",
            order_id=order["order_id"],
            customer_email=order.get("customer_email"),
        )
