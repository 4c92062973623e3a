"""Role-gated order operations.

Each operation validates locally through :mod:`order_tracker.state_machine`
(raising :class:`~order_tracker.errors.TransitionError` before anything is
written) and then persists the new aggregate in one gateway call, so the
status change and its history entry reach the cache and the backend together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from . import state_machine
from .errors import IllegalTransition, OrderClaimed, OrderNotFound, PreconditionFailed, RoleNotAllowed
from .gateway import PersistenceGateway
from .schemas import Order, OrderDraft, OrderStatus, PaymentMethod, Role, User

logger = logging.getLogger("order-tracker.workflow")


@dataclass(frozen=True)
class OrderView:
    order: Order
    editable: bool

    @property
    def claimed_by(self) -> str | None:
        return self.order.currently_working_by


class OrderWorkflow:
    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    async def _current(self, order_id: str) -> Order:
        order = self.gateway.cache.find(order_id)
        if order is None:
            orders = await self.gateway.fetch_orders(force_refresh=True, prioritize_active=False)
            order = next((o for o in orders if o.id == order_id), None)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def _commit(self, updated: Order, user: User) -> bool:
        ok = await self.gateway.update_order(updated, user)
        if ok:
            entry = updated.last_history
            logger.info("Order %s: %s (%s)", updated.id, entry.action if entry else "updated", user.name)
        return ok

    async def create_order(self, draft: OrderDraft, user: User) -> bool:
        if user.role is not Role.COORDINATOR:
            raise RoleNotAllowed(f"{user.name} no puede crear presupuestos")
        return await self.gateway.create_order(draft, user)

    async def delete_order(self, order_id: str, user: User) -> bool:
        if user.role is not Role.COORDINATOR:
            raise RoleNotAllowed(f"{user.name} no puede eliminar pedidos")
        return await self.gateway.delete_order(order_id)

    async def open_order(self, order_id: str, user: User) -> OrderView:
        """Open the detail view, claiming unclaimed drafting orders for operators."""

        order = await self._current(order_id)
        if state_machine.should_claim(order, user):
            if not await self.gateway.set_working_on(order.id, user.name, user.role):
                logger.warning("Could not claim %s for %s: %s", order.id, user.name, self.gateway.last_error)
            orders = await self.gateway.fetch_orders(force_refresh=True, prioritize_active=True)
            order = next((o for o in orders if o.id == order_id), order)
        return OrderView(order=order, editable=state_machine.can_edit(order, user))

    async def close_order(self, order_id: str, user: User) -> bool:
        """Close the detail view, releasing the user's own claim."""

        if user.role is not Role.OPERATOR:
            return True
        order = self.gateway.cache.find(order_id)
        if order is not None and order.currently_working_by != user.name:
            return True
        return await self.gateway.clear_working_on(order_id, user.name, user.role)

    async def transition(self, order_id: str, target: OrderStatus, user: User, **options: Any) -> bool:
        order = await self._current(order_id)
        updated = state_machine.apply_transition(order, target, user, **options)
        return await self._commit(updated, user)

    async def register_payment(self, order_id: str, user: User, method: PaymentMethod, *, notes: str | None = None) -> bool:
        order = await self._current(order_id)
        return await self._commit(state_machine.register_payment(order, user, method, notes=notes), user)

    async def verify_transfer(self, order_id: str, user: User, *, notes: str | None = None) -> bool:
        order = await self._current(order_id)
        return await self._commit(state_machine.verify_transfer(order, user, notes=notes), user)

    async def check_item(self, order_id: str, item_id: str, user: User, *, checked: bool = True) -> bool:
        order = await self._current(order_id)
        return await self.gateway.update_order(state_machine.check_item(order, item_id, user, checked=checked), user)

    async def record_shortage(self, order_id: str, item_id: str, picked_quantity: float, user: User) -> bool:
        order = await self._current(order_id)
        return await self._commit(state_machine.record_shortage(order, item_id, picked_quantity, user), user)

    async def record_return(
        self, order_id: str, item_id: str, quantity: float, user: User, *, reason: str | None = None
    ) -> bool:
        order = await self._current(order_id)
        return await self._commit(state_machine.record_return(order, item_id, quantity, user, reason=reason), user)

    async def edit_order(self, edited: Order, user: User, *, notes: str | None = None) -> bool:
        """Save free edits (client data, budget lines) without changing status or history."""

        stored = await self._current(edited.id)
        if not state_machine.can_edit(stored, user):
            raise OrderClaimed(stored.currently_working_by or "")
        if edited.status is not stored.status:
            raise IllegalTransition("El estado solo puede cambiar mediante una transición")
        if {entry.id for entry in edited.history} != {entry.id for entry in stored.history}:
            raise PreconditionFailed("El historial no se puede modificar")
        updated = edited.model_copy(deep=True)
        updated.history.append(state_machine.history_entry(user, "Pedido editado", notes=notes))
        return await self._commit(updated, user)
