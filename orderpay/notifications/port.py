"""Notifier port: customer/operator messages sent after a committed state change."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict


class Notifier(ABC):
    @abstractmethod
    async def notify_checkout(self, order: Dict[str, Any]) -> None:
        """An invoice was issued for ``order``."""
        ...

    @abstractmethod
    async def notify_payment_success(self, order: Dict[str, Any]) -> None:
        """``order`` was paid."""
        ...
