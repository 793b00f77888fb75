"""Fake notifier: records messages in memory for test assertions."""
from __future__ import annotations

from typing import Any, Dict, List

from .port import Notifier


class FakeNotifier(Notifier):
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.should_succeed = True
        self.failure_reason = "notification delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "notification delivery failed") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def _record(self, kind: str, order: Dict[str, Any]) -> None:
        if not self.should_succeed:
            raise RuntimeError(self.failure_reason)
        self.sent.append({"kind": kind, "order_id": order["order_id"]})

    async def notify_checkout(self, order: Dict[str, Any]) -> None:
        self._record("checkout", order)

    async def notify_payment_success(self, order: Dict[str, Any]) -> None:
        self._record("payment_success", order)

    def count(self, kind: str, order_id: str | None = None) -> int:
        return sum(
            1 for m in self.sent
            if m["kind"] == kind and (order_id is None or m["order_id"] == order_id)
        )

    def reset(self) -> None:
        self.sent.clear()
        self.should_succeed = True
        self.failure_reason = "notification delivery failed"
