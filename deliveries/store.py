"""
Order Store interface and an in-memory implementation (single process, tests).
"""
import asyncio
from typing import Protocol

from deliveries.models import NewOrder, Order
from deliveries.order_state import OrderStatus


class OrderStore(Protocol):
    async def insert(self, order: NewOrder) -> int: ...

    async def find_by_id(self, order_id: int) -> Order | None: ...

    async def update_status_if_current(
        self, order_id: int, expected: OrderStatus, new: OrderStatus
    ) -> bool:
        """Set status to `new` only if it is still `expected`. False if it was not."""
        ...

    async def query_by_owner(self, owner_id: str) -> list[Order]: ...

    async def query_all(self, status: OrderStatus | None = None) -> list[Order]: ...


def _newest_first(orders) -> list[Order]:
    return sorted(orders, key=lambda o: (o.created_at, o.id), reverse=True)


class InMemoryOrderStore:
    def __init__(self) -> None:
        self._orders: dict[int, Order] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def insert(self, order: NewOrder) -> int:
        async with self._lock:
            order_id = self._next_id
            self._next_id += 1
            self._orders[order_id] = Order(id=order_id, **order.model_dump())
        return order_id

    async def find_by_id(self, order_id: int) -> Order | None:
        await asyncio.sleep(0)
        return self._orders.get(order_id)

    async def update_status_if_current(
        self, order_id: int, expected: OrderStatus, new: OrderStatus
    ) -> bool:
        await asyncio.sleep(0)
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status != expected:
                return False
            self._orders[order_id] = order.model_copy(update={"status": new})
            return True

    async def query_by_owner(self, owner_id: str) -> list[Order]:
        await asyncio.sleep(0)
        return _newest_first(o for o in self._orders.values() if o.owner_id == owner_id)

    async def query_all(self, status: OrderStatus | None = None) -> list[Order]:
        await asyncio.sleep(0)
        return _newest_first(
            o for o in self._orders.values() if status is None or o.status == status
        )
