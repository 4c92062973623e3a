"""Persistence gateway: the single entry point for reading and writing orders.

Wraps a :class:`~order_tracker.backends.Backend` with the order cache. Every
operation reports success with a boolean (or falls back to cached data) and
stores a human-readable message in :attr:`PersistenceGateway.last_error`;
backend failures are never raised to the caller and never retried.
"""

from __future__ import annotations

import logging

from .backends.base import Backend, FetchScope
from .broadcast import Broadcaster
from .cache import OrderCache
from .errors import BackendError
from .ids import ORDER_PREFIX, generate_id
from .schemas import Notification, Order, OrderDraft, Role, User, utcnow
from .session import DEFAULT_USERS
from .state_machine import CREATED_ACTION, INITIAL_STATUS, history_entry

logger = logging.getLogger("order-tracker.gateway")

ACTIVE_LIMIT = 60
FULL_LIMIT = 200
COMPLETED_LIMIT = 120


class PersistenceGateway:
    def __init__(
        self,
        backend: Backend,
        cache: OrderCache | None = None,
        broadcaster: Broadcaster | None = None,
        *,
        active_limit: int = ACTIVE_LIMIT,
        full_limit: int = FULL_LIMIT,
        completed_limit: int = COMPLETED_LIMIT,
    ) -> None:
        self.backend = backend
        self.cache = cache if cache is not None else OrderCache()
        self.broadcaster = broadcaster
        self.active_limit = active_limit
        self.full_limit = full_limit
        self.completed_limit = completed_limit
        self.last_error: str | None = None

    @property
    def mode(self) -> str:
        return self.backend.name

    @property
    def supports_push(self) -> bool:
        return self.backend.supports_push

    def _fail(self, operation: str, exc: BackendError, default: str) -> None:
        self.last_error = str(exc) or default
        logger.error("%s failed: %s", operation, self.last_error)

    def _broadcast(self, notification: Notification) -> None:
        # sibling observers only need this when there is no push channel
        if self.broadcaster is None or self.backend.supports_push:
            return
        self.broadcaster.publish(notification)

    async def fetch_orders(self, force_refresh: bool = False, prioritize_active: bool = False) -> list[Order]:
        """Return orders, honoring the cache window unless ``force_refresh``.

        A prioritized fetch loads only non-paid orders and keeps the paid
        orders already cached. On failure the cached snapshot is returned.
        """

        if not force_refresh and self.cache.is_fresh():
            return self.cache.get()

        self.last_error = None
        if prioritize_active:
            scope, limit = FetchScope.ACTIVE, self.active_limit
        else:
            scope, limit = FetchScope.ALL, self.full_limit
        try:
            orders = await self.backend.load_orders(scope, limit)
        except BackendError as exc:
            self._fail("fetch_orders", exc, "Error desconocido")
            return self.cache.get()

        if prioritize_active:
            return self.cache.merge_active(orders)
        return self.cache.set(orders)

    async def fetch_completed_orders(self) -> list[Order]:
        try:
            completed = await self.backend.load_orders(FetchScope.COMPLETED, self.completed_limit)
        except BackendError as exc:
            self._fail("fetch_completed_orders", exc, "Error desconocido")
            return []
        self.cache.merge_completed(completed)
        return completed

    async def create_order(self, draft: OrderDraft, user: User) -> bool:
        self.last_error = None
        now = utcnow()
        order = Order(
            id=generate_id(ORDER_PREFIX),
            client_name=draft.client_name,
            client_address=draft.client_address,
            items=[
                item.model_copy(update={"original_quantity": item.quantity, "is_checked": False})
                for item in draft.items
            ],
            status=INITIAL_STATUS,
            payment_method=draft.payment_method,
            total_amount=draft.total_amount,
            initial_notes=draft.initial_notes,
            created_at=now,
            history=[history_entry(user, CREATED_ACTION, notes=draft.initial_notes or None, now=now)],
        )
        self.cache.prepend(order)
        try:
            await self.backend.insert_order(order)
        except BackendError as exc:
            self.cache.remove(order.id)
            self._fail("create_order", exc, "Error al crear pedido")
            return False

        logger.info("Order %s created by %s", order.id, user.name)
        self._broadcast(
            Notification(
                kind="info",
                title="Nuevo Presupuesto",
                message=f"{user.name} creó un presupuesto para {order.client_name}",
                exclude_user=user.name,
            )
        )
        return True

    async def update_order(self, order: Order, user: User | None = None) -> bool:
        """Persist the whole aggregate. The cache keeps the new version even on failure."""

        self.last_error = None
        self.cache.upsert(order)
        try:
            await self.backend.replace_order(order)
        except BackendError as exc:
            self.cache.invalidate()
            self._fail("update_order", exc, "Error al actualizar pedido")
            return False

        last = order.last_history
        if user is not None and last is not None and last.user == user.name:
            self._broadcast(
                Notification(
                    kind="success",
                    title="Estado Actualizado",
                    message=f"{user.name} actualizó el pedido de {order.client_name}",
                    exclude_user=user.name,
                )
            )
        return True

    async def delete_order(self, order_id: str) -> bool:
        self.last_error = None
        index = self.cache.index_of(order_id)
        removed = self.cache.find(order_id)
        self.cache.remove(order_id)
        try:
            await self.backend.delete_order(order_id)
        except BackendError as exc:
            # only the removed order goes back; writes made meanwhile are kept
            if removed is not None and index is not None:
                self.cache.reinsert(removed, index)
            self._fail("delete_order", exc, "Error al eliminar pedido")
            return False
        logger.info("Order %s deleted", order_id)
        return True

    async def fetch_users(self) -> list[User]:
        try:
            users = await self.backend.list_users()
        except BackendError as exc:
            logger.warning("fetch_users failed, using built-in users: %s", exc)
            return list(DEFAULT_USERS)
        return users or list(DEFAULT_USERS)

    async def set_working_on(self, order_id: str, user_name: str, role: Role | str) -> bool:
        """Claim an order for an operator. Coordinators never claim."""

        if Role(role) is not Role.OPERATOR:
            return True
        started_at = utcnow()
        current = self.cache.find(order_id)
        if current is not None:
            self.cache.upsert(
                current.model_copy(update={"currently_working_by": user_name, "working_start_time": started_at})
            )
        try:
            await self.backend.set_working(order_id, user_name, started_at)
        except BackendError as exc:
            rolled_back = self.cache.find(order_id)
            if rolled_back is not None and rolled_back.currently_working_by == user_name:
                self.cache.upsert(
                    rolled_back.model_copy(
                        update={
                            "currently_working_by": current.currently_working_by if current else None,
                            "working_start_time": current.working_start_time if current else None,
                        }
                    )
                )
            self._fail("set_working_on", exc, "No se pudo tomar el pedido")
            return False
        return True

    async def clear_working_on(self, order_id: str, user_name: str | None = None, role: Role | str | None = None) -> bool:
        """Release a claim. Releasing an unclaimed order is a successful no-op."""

        if role is not None and Role(role) is not Role.OPERATOR:
            return True
        current = self.cache.find(order_id)
        if current is not None and current.currently_working_by and (
            not user_name or current.currently_working_by == user_name
        ):
            self.cache.upsert(current.model_copy(update={"currently_working_by": None, "working_start_time": None}))
        try:
            await self.backend.clear_working(order_id, user_name)
        except BackendError as exc:
            self._fail("clear_working_on", exc, "No se pudo liberar el pedido")
            return False
        return True
