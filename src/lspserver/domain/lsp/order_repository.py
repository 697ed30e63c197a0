"""Order domain repository interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Optional

from .entities import HoldInvoiceSecret, Order


class OrderRepository(ABC):
    """Abstract repository interface for Order entities and their secrets."""

    @abstractmethod
    async def create(self, order: Order, secret: HoldInvoiceSecret) -> Order:
        """Persist a new order together with its hold-invoice secret.

        Raises ValueError if an order with the same id already exists.
        """
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_hold_invoice_secret(
        self, order_id: str
    ) -> Optional[HoldInvoiceSecret]:
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """Overwrite an existing order. Callers hold ``lock(order.order_id)``."""
        pass

    @abstractmethod
    async def begin_channel_open(self, order_id: str) -> bool:
        """Record that a channel open is about to be requested for the order.

        Returns False if an earlier attempt is already recorded.
        """
        pass

    @abstractmethod
    async def clear_channel_open(self, order_id: str) -> None:
        """Forget a recorded attempt the node is known to have refused."""
        pass

    @abstractmethod
    def lock(self, order_id: str) -> AsyncContextManager[None]:
        """Exclusive section for load-mutate-store on one order."""
        pass
