"""On-device fallback storage: one JSON slot holding every order aggregate."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from ..errors import BackendError, ClaimConflict, OrderNotFound
from ..schemas import Order, OrderStatus, User
from ..session import DEFAULT_USERS
from .base import Backend, FetchScope

logger = logging.getLogger("order-tracker.local")

ORDERS_SLOT = "orders.json"

_orders_adapter = TypeAdapter(list[Order])


class LocalBackend(Backend):
    name = "local"

    def __init__(self, data_dir: Path | str) -> None:
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / ORDERS_SLOT

    def _read(self) -> list[Order]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise BackendError(f"No se pudo leer {self.path}") from exc
        try:
            return _orders_adapter.validate_json(raw)
        except ValidationError:
            logger.warning("Corrupt order snapshot at %s, clearing it", self.path)
            self.path.unlink(missing_ok=True)
            return []

    def _write(self, orders: list[Order]) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            tmp_path.write_bytes(_orders_adapter.dump_json(orders))
            tmp_path.replace(self.path)
        except OSError as exc:
            raise BackendError(f"No se pudo guardar {self.path}") from exc

    @staticmethod
    def _index(orders: list[Order], order_id: str) -> int | None:
        return next((i for i, order in enumerate(orders) if order.id == order_id), None)

    async def load_orders(self, scope: FetchScope, limit: int) -> list[Order]:
        orders = self._read()
        if scope is FetchScope.ACTIVE:
            orders = [o for o in orders if o.status is not OrderStatus.PAID]
        elif scope is FetchScope.COMPLETED:
            orders = [o for o in orders if o.status is OrderStatus.PAID]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[:limit]

    async def insert_order(self, order: Order) -> None:
        orders = self._read()
        if self._index(orders, order.id) is not None:
            raise BackendError(f"El pedido {order.id} ya existe")
        orders.insert(0, order)
        self._write(orders)

    async def replace_order(self, order: Order) -> None:
        orders = self._read()
        index = self._index(orders, order.id)
        if index is None:
            raise OrderNotFound(order.id)
        stored = orders[index]
        known = {entry.id for entry in order.history}
        kept = [entry for entry in stored.history if entry.id not in known]
        # history is append-only: entries missing from the payload are kept
        orders[index] = order.model_copy(update={"history": sorted(kept + order.history, key=lambda e: e.timestamp)})
        self._write(orders)

    async def delete_order(self, order_id: str) -> None:
        orders = self._read()
        remaining = [o for o in orders if o.id != order_id]
        if len(remaining) != len(orders):
            self._write(remaining)

    async def list_users(self) -> list[User]:
        return list(DEFAULT_USERS)

    async def set_working(self, order_id: str, user_name: str, started_at: dt.datetime) -> None:
        orders = self._read()
        index = self._index(orders, order_id)
        if index is None:
            raise OrderNotFound(order_id)
        claimant = orders[index].currently_working_by
        if claimant and claimant != user_name:
            raise ClaimConflict(order_id, claimant)
        orders[index] = orders[index].model_copy(
            update={"currently_working_by": user_name, "working_start_time": started_at}
        )
        self._write(orders)

    async def clear_working(self, order_id: str, user_name: str | None = None) -> None:
        orders = self._read()
        index = self._index(orders, order_id)
        if index is None:
            return
        claimant = orders[index].currently_working_by
        if claimant is None or (user_name and claimant != user_name):
            return
        orders[index] = orders[index].model_copy(
            update={"currently_working_by": None, "working_start_time": None}
        )
        self._write(orders)
