"""Process-wide snapshot of the last fetched orders.

All methods are synchronous: under asyncio no other task can run between the
read and the write of a single call, so every update is atomic for readers.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable

from .schemas import Order, OrderStatus

DEFAULT_TTL = 5.0


class OrderCache:
    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._orders: list[Order] = []
        self._fetched_at: float | None = None

    def __len__(self) -> int:
        return len(self._orders)

    @property
    def fetched_at(self) -> float | None:
        return self._fetched_at

    def is_fresh(self) -> bool:
        """True when a non-empty snapshot was fetched within ``ttl`` seconds."""

        if not self._orders or self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self.ttl

    def get(self) -> list[Order]:
        return list(self._orders)

    def find(self, order_id: str) -> Order | None:
        return next((order for order in self._orders if order.id == order_id), None)

    def set(self, orders: Iterable[Order]) -> list[Order]:
        self._orders = list(orders)
        self._fetched_at = self._clock()
        return self.get()

    def merge_active(self, active: Iterable[Order]) -> list[Order]:
        """Replace non-terminal orders, keeping every paid order already held."""

        fresh = list(active)
        fresh_ids = {order.id for order in fresh}
        paid = [o for o in self._orders if o.status is OrderStatus.PAID and o.id not in fresh_ids]
        return self.set(fresh + paid)

    def merge_completed(self, completed: Iterable[Order]) -> list[Order]:
        done = list(completed)
        done_ids = {order.id for order in done}
        others = [o for o in self._orders if o.status is not OrderStatus.PAID and o.id not in done_ids]
        return self.set(others + done)

    def prepend(self, order: Order) -> None:
        self._orders = [order] + [o for o in self._orders if o.id != order.id]

    def upsert(self, order: Order) -> None:
        for index, current in enumerate(self._orders):
            if current.id == order.id:
                self._orders[index] = order
                return
        self._orders.insert(0, order)

    def remove(self, order_id: str) -> None:
        self._orders = [o for o in self._orders if o.id != order_id]

    def index_of(self, order_id: str) -> int | None:
        return next((i for i, order in enumerate(self._orders) if order.id == order_id), None)

    def reinsert(self, order: Order, index: int) -> None:
        """Put a removed order back at ``index`` unless a copy is already held."""

        if self.find(order.id) is not None:
            return
        self._orders.insert(min(index, len(self._orders)), order)

    def invalidate(self) -> None:
        """Force the next fetch to hit the backend. The snapshot stays readable."""

        self._fetched_at = None
