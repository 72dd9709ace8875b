"""
Order Record Store contract, plus the in-process implementation used for tests and local runs.
PostgreSQL implementation: orderflow.db.PostgresOrderStore.
"""
import asyncio
from typing import Protocol

from orderflow.audit import ActivityRecorder, AuditEntry, MemoryActivityLog
from orderflow.models import Order, OrderFilters


class OrderStore(Protocol):
    activity: ActivityRecorder

    async def get(self, order_id: str) -> Order | None: ...

    async def create(self, order: Order, entry: AuditEntry) -> None:
        """Persist a new order and its creation entry atomically."""
        ...

    async def replace(self, order: Order, expected_version: int, entry: AuditEntry) -> bool:
        """
        Compare-and-swap: store order and append entry only if the stored version is still
        expected_version. Returns False (writing nothing) when the record moved on.
        """
        ...

    async def list_for_customer(self, customer_id: str, filters: OrderFilters) -> list[Order]: ...

    async def list_orders(self, filters: OrderFilters, offset: int, limit: int) -> tuple[list[Order], int]:
        """Newest first. Returns (page of orders, total matching)."""
        ...


class MemoryOrderStore:
    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()
        self.activity = MemoryActivityLog()

    async def get(self, order_id: str) -> Order | None:
        # Orders are frozen models, sharing the stored instance is safe
        return self._orders.get(order_id)

    async def create(self, order: Order, entry: AuditEntry) -> None:
        async with self._lock:
            if order.id in self._orders:
                raise KeyError(f"duplicate order id {order.id}")
            self._orders[order.id] = order
            await self.activity.record(entry)

    async def replace(self, order: Order, expected_version: int, entry: AuditEntry) -> bool:
        async with self._lock:
            current = self._orders.get(order.id)
            if current is None or current.version != expected_version:
                return False
            self._orders[order.id] = order
            await self.activity.record(entry)
            return True

    def _newest_first(self, filters: OrderFilters, customer_id: str | None = None) -> list[Order]:
        matching = [
            o
            for o in self._orders.values()
            if (customer_id is None or o.customer_id == customer_id) and filters.matches(o)
        ]
        return sorted(matching, key=lambda o: o.created_at, reverse=True)

    async def list_for_customer(self, customer_id: str, filters: OrderFilters) -> list[Order]:
        return self._newest_first(filters, customer_id)

    async def list_orders(self, filters: OrderFilters, offset: int, limit: int) -> tuple[list[Order], int]:
        matching = self._newest_first(filters)
        return matching[offset : offset + limit], len(matching)
