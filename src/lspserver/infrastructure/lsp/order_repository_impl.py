"""Order repository implementation over a storage abstraction."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncContextManager, Optional

from ...domain.lsp.entities import HoldInvoiceSecret, Order
from ...domain.lsp.order_repository import OrderRepository
from ..storage import KeyValueStore


class OrderRepositoryImpl(OrderRepository):
    """Order repository using a KeyValueStore."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _order_key(order_id: str) -> str:
        return f"order:{order_id}"

    @staticmethod
    def _secret_key(order_id: str) -> str:
        return f"order:{order_id}:hold_invoice"

    @staticmethod
    def _channel_open_key(order_id: str) -> str:
        return f"order:{order_id}:channel_open"

    @staticmethod
    def _lock_key(order_id: str) -> str:
        return f"order:{order_id}:lock"

    async def create(self, order: Order, secret: HoldInvoiceSecret) -> Order:
        if secret.order_id != order.order_id:
            raise ValueError("Hold invoice secret does not belong to this order")
        # Secret first: an order is never visible without its secret
        stored = await self.store.set_if_absent(
            self._secret_key(order.order_id), secret.model_dump_json()
        )
        if not stored:
            raise ValueError("Order with this order_id already exists")
        await self.store.set(self._order_key(order.order_id), order.model_dump_json())
        return order

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        data = await self.store.get(self._order_key(order_id))
        if not data:
            return None
        return Order.model_validate_json(data)

    async def get_hold_invoice_secret(
        self, order_id: str
    ) -> Optional[HoldInvoiceSecret]:
        data = await self.store.get(self._secret_key(order_id))
        if not data:
            return None
        return HoldInvoiceSecret.model_validate_json(data)

    async def update(self, order: Order) -> Order:
        order_key = self._order_key(order.order_id)
        if await self.store.get(order_key) is None:
            raise ValueError("Order not found")
        await self.store.set(order_key, order.model_dump_json())
        return order

    async def begin_channel_open(self, order_id: str) -> bool:
        return await self.store.set_if_absent(
            self._channel_open_key(order_id),
            datetime.now(timezone.utc).isoformat(),
        )

    async def clear_channel_open(self, order_id: str) -> None:
        await self.store.delete(self._channel_open_key(order_id))

    def lock(self, order_id: str) -> AsyncContextManager[None]:
        return self.store.lock(self._lock_key(order_id))
