"""
Order store: the single source of truth for order state.

OrderStore ABC: create, get, update (one field-set per transition), append_log, query.
Production stores (SQL, document DB) implement this interface; InMemoryOrderStore
implements it for tests, demos and single-process deployments.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any

from orderflow_core.errors import OrderNotFoundError, PersistenceError
from orderflow_core.order import LogEntry, Order, OrderStatus, utc_now

logger = logging.getLogger(__name__)

# Fields a transition may write. id, pair, amount, direction and created_at never change.
UPDATABLE_FIELDS = frozenset({"status", "execution_price", "tx_hash"})


class OrderStore(ABC):
    """
    Abstract order store. Every write is a full-record update by order id
    (last writer wins at the granularity of one transition's field-set).
    Implementations raise PersistenceError (or OrderNotFoundError) on failure.
    """

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """Insert a new order. Raises PersistenceError if the id already exists."""
        ...

    @abstractmethod
    async def get(self, order_id: str) -> Order:
        """Return the current record. Raises OrderNotFoundError."""
        ...

    @abstractmethod
    async def update(self, order_id: str, **fields: Any) -> Order:
        """Atomically set the given fields (and updated_at); return the new record."""
        ...

    @abstractmethod
    async def append_log(self, order_id: str, message: str) -> Order:
        """Append one timestamped entry to the order's log; return the new record."""
        ...

    @abstractmethod
    async def query(self, status: OrderStatus | None = None, limit: int = 50) -> list[Order]:
        """Orders, newest first, optionally filtered by status, at most limit of them."""
        ...


class InMemoryOrderStore(OrderStore):
    """
    Dict-backed store. Operations never suspend, so each one is atomic with
    respect to other asyncio tasks.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}

    async def create(self, order: Order) -> Order:
        if order.id in self._orders:
            raise PersistenceError(f"Order already exists: {order.id}")
        self._orders[order.id] = order
        logger.debug("Order %s created (%s %s %s)", order.id, order.direction.value, order.amount, order.pair)
        return order

    async def get(self, order_id: str) -> Order:
        try:
            return self._orders[order_id]
        except KeyError:
            raise OrderNotFoundError(order_id) from None

    async def update(self, order_id: str, **fields: Any) -> Order:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")
        current = await self.get(order_id)
        updated = replace(current, updated_at=utc_now(), **fields)
        self._orders[order_id] = updated
        return updated

    async def append_log(self, order_id: str, message: str) -> Order:
        current = await self.get(order_id)
        entry = LogEntry(message=message)
        updated = replace(current, logs=current.logs + (entry,), updated_at=entry.timestamp)
        self._orders[order_id] = updated
        return updated

    async def query(self, status: OrderStatus | None = None, limit: int = 50) -> list[Order]:
        if limit < 0:
            raise ValueError("limit must be >= 0")
        orders = [o for o in self._orders.values() if status is None or o.status is status]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[:limit]

    def __len__(self) -> int:
        return len(self._orders)
