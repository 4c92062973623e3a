"""Exception hierarchy shared by the order tracker client and service."""

from __future__ import annotations


class OrderTrackerError(Exception):
    """Base class for every error raised by the package."""

    code = "order_tracker.error"


class TransitionError(OrderTrackerError):
    """A state-machine operation was rejected before reaching persistence."""

    code = "order.transition_rejected"


class IllegalTransition(TransitionError):
    code = "order.illegal_transition"


class RoleNotAllowed(TransitionError):
    code = "order.role_not_allowed"


class OrderClaimed(TransitionError):
    """The order is being worked on by another operator."""

    code = "order.claimed"

    def __init__(self, claimant: str) -> None:
        super().__init__(f"{claimant} está trabajando en este pedido")
        self.claimant = claimant


class PreconditionFailed(TransitionError):
    code = "order.precondition_failed"


class BackendError(OrderTrackerError):
    """Persistence failure: network, storage or backend rejection."""

    code = "backend.error"


class OrderNotFound(BackendError):
    code = "order.not_found"

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Pedido {order_id} no encontrado")
        self.order_id = order_id


class ClaimConflict(BackendError):
    code = "order.claim_conflict"

    def __init__(self, order_id: str, claimant: str | None) -> None:
        super().__init__(f"El pedido {order_id} ya está tomado por {claimant}")
        self.order_id = order_id
        self.claimant = claimant
