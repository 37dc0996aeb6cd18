"""Order persistence."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Protocol

from .exceptions import NotFoundError, PersistenceError
from .schemas import Order, PaymentStatus


class OrderStore(Protocol):
    """Protocol defining the persistence interface for orders.

    Payment status only ever changes through ``conditional_update``.
    """

    async def create(self, order: Order) -> Order:
        ...

    async def find_by_id(self, order_id: str) -> Order | None:
        ...

    async def find_by_gateway_order_id(self, gateway_order_id: str) -> Order | None:
        ...

    async def list_by_user(self, user_id: str) -> list[Order]:
        ...

    async def update(self, order_id: str, patch: dict[str, Any]) -> Order:
        """Apply a patch that does not touch payment_status."""
        ...

    async def conditional_update(
        self, order_id: str, expected_status: PaymentStatus, patch: dict[str, Any]
    ) -> Order | None:
        """Apply a patch only if payment_status still equals expected_status.

        Returns:
            The updated order, or None when the order was not in the expected state
        """
        ...

    async def set_gateway_order_if_absent(self, order_id: str, gateway_order_id: str) -> Order:
        """Record the gateway reference unless one is already stored.

        Returns:
            The order as stored afterwards; its reference is the first one written
        """
        ...


class InMemoryOrderStore:
    """Order store kept in process memory.

    Writes are serialized by a single lock, so a conditional update is an atomic
    compare-and-set. Callers always receive copies.
    """

    def __init__(self):
        """Initialize an empty store."""
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def create(self, order: Order) -> Order:
        """Store a new order.

        Args:
            order: The order to store

        Returns:
            A copy of the stored order

        Raises:
            PersistenceError: If an order with the same id or receipt number exists
        """
        async with self._lock:
            if order.id in self._orders:
                raise PersistenceError(f"duplicate order id {order.id}")
            if any(o.order_number == order.order_number for o in self._orders.values()):
                raise PersistenceError(f"duplicate order number {order.order_number}")
            self._orders[order.id] = order.model_copy(deep=True)
        return order.model_copy(deep=True)

    async def find_by_id(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def find_by_gateway_order_id(self, gateway_order_id: str) -> Order | None:
        for order in self._orders.values():
            if order.gateway_order_id == gateway_order_id:
                return order.model_copy(deep=True)
        return None

    async def list_by_user(self, user_id: str) -> list[Order]:
        """Get a user's orders, newest first."""
        orders = [o.model_copy(deep=True) for o in reversed(self._orders.values()) if o.user_id == user_id]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def update(self, order_id: str, patch: dict[str, Any]) -> Order:
        if "payment_status" in patch:
            raise ValueError("payment_status may only change through conditional_update")
        async with self._lock:
            return self._apply(order_id, patch)

    async def conditional_update(
        self, order_id: str, expected_status: PaymentStatus, patch: dict[str, Any]
    ) -> Order | None:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise NotFoundError(order_id)
            if current.payment_status != expected_status:
                return None
            return self._apply(order_id, patch)

    async def set_gateway_order_if_absent(self, order_id: str, gateway_order_id: str) -> Order:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise NotFoundError(order_id)
            if current.gateway_order_id is not None:
                return current.model_copy(deep=True)
            return self._apply(order_id, {"gateway_order_id": gateway_order_id})

    def _apply(self, order_id: str, patch: dict[str, Any]) -> Order:
        current = self._orders.get(order_id)
        if current is None:
            raise NotFoundError(order_id)
        updated = current.model_copy(update={**patch, "updated_at": datetime.now(timezone.utc)}, deep=True)
        self._orders[order_id] = updated
        return updated.model_copy(deep=True)
