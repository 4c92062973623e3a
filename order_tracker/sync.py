"""Keeps the order cache converging with the backend.

Remote backends push row-level change events: each one invalidates the cache
and marks it dirty, and a single worker coalesces bursts into one prioritized
re-fetch after ``debounce`` seconds. Backends without a push channel are
polled every ``poll_interval`` seconds instead.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from .errors import BackendError
from .gateway import PersistenceGateway
from .schemas import ChangeEvent, Order

logger = logging.getLogger("order-tracker.sync")

POLL_INTERVAL = 15.0
DEBOUNCE = 0.25
RECONNECT_DELAY = 5.0

OrdersCallback = Callable[[list[Order]], Union[Awaitable[None], None]]


class OrderSynchronizer:
    def __init__(
        self,
        gateway: PersistenceGateway,
        on_orders: Optional[OrdersCallback] = None,
        *,
        poll_interval: float = POLL_INTERVAL,
        debounce: float = DEBOUNCE,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self.gateway = gateway
        self.on_orders = on_orders
        self.poll_interval = poll_interval
        self.debounce = debounce
        self.reconnect_delay = reconnect_delay
        self.full_load: asyncio.Task | None = None
        self.events_received = 0
        self.refetches = 0
        self._in_flight = 0
        self._dirty = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def busy(self) -> bool:
        return self._in_flight > 0

    async def _deliver(self, orders: list[Order]) -> None:
        if self.on_orders is None:
            return
        result = self.on_orders(orders)
        if inspect.isawaitable(result):
            await result

    async def _fetch(self, force_refresh: bool, prioritize_active: bool) -> list[Order]:
        self._in_flight += 1
        try:
            orders = await self.gateway.fetch_orders(force_refresh, prioritize_active)
        finally:
            self._in_flight -= 1
        await self._deliver(orders)
        return orders

    async def _background_fetch(self, force_refresh: bool, prioritize_active: bool) -> None:
        try:
            await self._fetch(force_refresh, prioritize_active)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Background fetch failed")

    async def initial_load(self) -> list[Order]:
        """Prioritized fetch first; the full history follows in :attr:`full_load`."""

        active = await self._fetch(False, True)
        self.full_load = asyncio.create_task(self._background_fetch(True, False))
        return active

    async def refresh(self) -> list[Order]:
        """Manual refresh: forced prioritized fetch, then forced full fetch."""

        await self._fetch(True, True)
        return await self._fetch(True, False)

    def notify_change(self, event: ChangeEvent | None = None) -> None:
        """Record a backend change: invalidate now, re-fetch once the burst settles."""

        self.events_received += 1
        self.gateway.cache.invalidate()
        self._dirty.set()
        if event is not None:
            logger.debug("Change on %s (%s %s)", event.table, event.type, event.record_id)

    async def _refetch_worker(self) -> None:
        while True:
            await self._dirty.wait()
            await asyncio.sleep(self.debounce)
            self._dirty.clear()
            self.refetches += 1
            await self._background_fetch(True, True)

    async def _listen(self) -> None:
        while True:
            try:
                async for event in self.gateway.backend.changes():
                    self.notify_change(event)
            except BackendError as exc:
                logger.warning("Change stream lost: %s", exc)
            else:
                logger.info("Change stream closed by server")
            await asyncio.sleep(self.reconnect_delay)

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            if self.busy:
                logger.debug("Skipping poll, fetch already in flight")
                continue
            await self._background_fetch(False, False)

    def start(self) -> None:
        if self._tasks:
            return
        if self.gateway.supports_push:
            logger.info("Subscribing to %s change notifications", self.gateway.mode)
            self._tasks = [
                asyncio.create_task(self._listen()),
                asyncio.create_task(self._refetch_worker()),
            ]
        else:
            logger.info("No push channel, polling every %ss", self.poll_interval)
            self._tasks = [asyncio.create_task(self._poll())]

    async def stop(self) -> None:
        tasks = list(self._tasks)
        if self.full_load is not None and not self.full_load.done():
            tasks.append(self.full_load)
        self._tasks = []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "OrderSynchronizer":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
