"""Derive user-facing events by diffing successive order snapshots."""

from __future__ import annotations

from typing import Sequence

from .schemas import Notification, Order, Role, User
from .state_machine import STATUS_LABELS


def project(previous: Sequence[Order] | None, current: Sequence[Order], user: User | None) -> list[Notification]:
    """Events between two snapshots, as seen by ``user``.

    Without a previous snapshot there is no baseline and nothing is reported.
    """

    if not previous or not current:
        return []

    user_name = user.name if user else None
    before = {order.id: order for order in previous}
    events: list[Notification] = []

    for order in current:
        prev = before.get(order.id)
        if prev is None:
            if user is None or user.role is not Role.COORDINATOR:
                events.append(
                    Notification(kind="info", title="Nuevo Pedido", message=f"Se creó el pedido para {order.client_name}")
                )
            continue

        if prev.status is not order.status:
            last = order.last_history
            if last is not None and last.user != user_name:
                events.append(
                    Notification(
                        kind="success",
                        title="Estado Actualizado",
                        message=f"{order.client_name} - {STATUS_LABELS[order.status]} por {last.user}",
                    )
                )

        claimant = order.currently_working_by
        if not prev.currently_working_by and claimant and claimant != user_name:
            events.append(
                Notification(
                    kind="info",
                    title="Trabajando en Pedido",
                    message=f"{claimant} está trabajando en {order.client_name}",
                )
            )
    return events


class NotificationTracker:
    """Keeps the last snapshot seen and reports what changed since."""

    def __init__(self, user: User | None = None) -> None:
        self.user = user
        self._previous: list[Order] | None = None

    def observe(self, orders: Sequence[Order]) -> list[Notification]:
        events = project(self._previous, orders, self.user)
        self._previous = list(orders)
        return events

    def reset(self) -> None:
        self._previous = None
