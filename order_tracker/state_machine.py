"""Fulfillment pipeline rules.

Every function here is pure: it validates against the given order and user,
raises a :class:`~order_tracker.errors.TransitionError` when the operation is
not allowed and otherwise returns a new :class:`Order`. Nothing is persisted.
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple, Optional

from .errors import IllegalTransition, OrderClaimed, PreconditionFailed, RoleNotAllowed
from .ids import HISTORY_PREFIX, generate_id
from .schemas import (
    HistoryEntry,
    LineItem,
    MissingItem,
    Order,
    OrderStatus,
    PaymentMethod,
    ReturnedItem,
    Role,
    User,
    utcnow,
)

PIPELINE: tuple[OrderStatus, ...] = tuple(OrderStatus)
INITIAL_STATUS = OrderStatus.DRAFTING
TERMINAL_STATUS = OrderStatus.PAID

STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.DRAFTING: "En Armado",
    OrderStatus.PICKING_DONE: "Armado",
    OrderStatus.PICKING_VERIFIED: "Armado Controlado",
    OrderStatus.INVOICED: "Facturado",
    OrderStatus.INVOICE_VERIFIED: "Factura Controlada",
    OrderStatus.SHIPPING: "En Tránsito",
    OrderStatus.DELIVERED: "Entregado",
    OrderStatus.PAID: "Pagado",
}

CREATED_ACTION = "Presupuesto creado y pedido listo para armar"

# amounts are stored with two decimals
CENTS = Decimal("0.01")

_OPERATOR = frozenset({Role.OPERATOR})
_COORDINATOR = frozenset({Role.COORDINATOR})
_ANYONE = frozenset(Role)


@dataclass(frozen=True)
class Transition:
    source: OrderStatus
    target: OrderStatus
    roles: frozenset[Role]
    action: str


TRANSITIONS: dict[OrderStatus, Transition] = {
    t.source: t
    for t in (
        Transition(OrderStatus.DRAFTING, OrderStatus.PICKING_DONE, _OPERATOR, "Pedido armado"),
        Transition(OrderStatus.PICKING_DONE, OrderStatus.PICKING_VERIFIED, _OPERATOR, "Armado controlado"),
        Transition(OrderStatus.PICKING_VERIFIED, OrderStatus.INVOICED, _COORDINATOR, "Pedido facturado"),
        Transition(OrderStatus.INVOICED, OrderStatus.INVOICE_VERIFIED, _OPERATOR, "Factura controlada"),
        Transition(OrderStatus.INVOICE_VERIFIED, OrderStatus.SHIPPING, _OPERATOR, "Pedido en tránsito"),
        Transition(OrderStatus.SHIPPING, OrderStatus.DELIVERED, _OPERATOR, "Pedido entregado"),
        Transition(OrderStatus.DELIVERED, OrderStatus.PAID, _ANYONE, "Pago confirmado"),
    )
}


class Bucket(str, enum.Enum):
    ACTIVE = "active"
    AWAITING_PAYMENT = "awaiting_payment"
    COMPLETED = "completed"


class Buckets(NamedTuple):
    active: list[Order]
    awaiting_payment: list[Order]
    completed: list[Order]


@dataclass(frozen=True)
class NextAction:
    label: str
    target: Optional[OrderStatus] = None


# --- helpers -----------------------------------------------------------------


def _require_role(user: User, roles: frozenset[Role]) -> None:
    if user.role not in roles:
        raise RoleNotAllowed(f"{user.name} no tiene permiso para esta acción")


def _require_unclaimed(order: Order, user: User) -> None:
    if user.role is Role.COORDINATOR:
        return
    claimant = order.currently_working_by
    if claimant and claimant != user.name:
        raise OrderClaimed(claimant)


def _require_status(order: Order, *allowed: OrderStatus) -> None:
    if order.status not in allowed:
        raise IllegalTransition(f"Acción no disponible en estado {STATUS_LABELS[order.status]}")


def history_entry(user: User | str, action: str, *, notes: str | None = None, now: dt.datetime | None = None) -> HistoryEntry:
    name = user.name if isinstance(user, User) else user
    return HistoryEntry(
        id=generate_id(HISTORY_PREFIX),
        action=action,
        user=name,
        timestamp=now or utcnow(),
        notes=notes,
    )


def _with_history(order: Order, user: User, action: str, notes: str | None, now: dt.datetime | None, **changes) -> Order:
    entry = history_entry(user, action, notes=notes, now=now)
    updated = order.model_copy(update=changes, deep=True)
    updated.history.append(entry)
    return updated


def unresolved_items(order: Order) -> list[LineItem]:
    """Line items that still block ``drafting -> picking_done``.

    An item is unresolved when it has not been checked, or when it was picked
    short and the shortage is not recorded as a missing item.
    """

    recorded = {missing.product_id: missing.quantity for missing in order.missing_items}
    pending = []
    for item in order.items:
        if not item.is_checked:
            pending.append(item)
        elif item.shortage and recorded.get(item.id) != item.shortage:
            pending.append(item)
    return pending


# --- transitions -------------------------------------------------------------


def get_transition(order: Order, target: OrderStatus) -> Transition:
    transition = TRANSITIONS.get(order.status)
    if transition is None or transition.target is not target:
        raise IllegalTransition(
            f"No se puede pasar de {STATUS_LABELS[order.status]} a {STATUS_LABELS[target]}"
        )
    return transition


def check_transition(order: Order, target: OrderStatus, user: User) -> Transition:
    """Validate a transition without applying it."""

    transition = get_transition(order, target)
    _require_role(user, transition.roles)
    _require_unclaimed(order, user)

    if target is OrderStatus.PICKING_DONE:
        pending = unresolved_items(order)
        if pending:
            names = ", ".join(item.name for item in pending)
            raise PreconditionFailed(f"Faltan controlar productos: {names}")
    elif target is OrderStatus.PICKING_VERIFIED:
        if order.armed_by == user.name:
            raise PreconditionFailed("El control del armado debe hacerlo otra persona")
    elif target is OrderStatus.PAID:
        if not order.is_paid:
            raise PreconditionFailed("El pedido todavía no está pagado")
        if order.payment_method is PaymentMethod.TRANSFER and order.awaiting_payment_verification:
            raise PreconditionFailed("La transferencia todavía no fue verificada")
    return transition


def can_transition(order: Order, target: OrderStatus, user: User) -> bool:
    try:
        check_transition(order, target, user)
    except (IllegalTransition, RoleNotAllowed, OrderClaimed, PreconditionFailed):
        return False
    return True


def apply_transition(
    order: Order,
    target: OrderStatus,
    user: User,
    *,
    notes: str | None = None,
    payment_method: PaymentMethod | None = None,
    collected: bool = False,
    now: dt.datetime | None = None,
) -> Order:
    """Move ``order`` to ``target`` and append exactly one history entry.

    ``payment_method`` and ``collected`` only apply to ``shipping -> delivered``.
    """

    transition = check_transition(order, target, user)
    action = transition.action
    changes: dict = {"status": target}

    if target is OrderStatus.PICKING_DONE:
        changes.update(armed_by=user.name, currently_working_by=None, working_start_time=None)
    elif target is OrderStatus.PICKING_VERIFIED:
        changes["controlled_by"] = user.name
    elif target is OrderStatus.INVOICED:
        items, total = _priced_items(order)
        changes.update(items=items, total_amount=total)
    elif target is OrderStatus.DELIVERED:
        method = payment_method or order.payment_method
        changes.update(payment_method=method, is_paid=False, awaiting_payment_verification=False)
        if collected and method is PaymentMethod.CASH:
            changes["is_paid"] = True
            action = "Pedido entregado y cobrado en efectivo"
        elif collected and method is PaymentMethod.TRANSFER:
            changes["awaiting_payment_verification"] = True
            action = "Pedido entregado, transferencia pendiente de verificación"

    return _with_history(order, user, action, notes, now, **changes)


def _priced_items(order: Order) -> tuple[list[LineItem], Optional[Decimal]]:
    items = []
    total: Optional[Decimal] = None
    for item in order.items:
        if item.unit_price is None:
            items.append(item.model_copy())
            continue
        subtotal = (item.unit_price * Decimal(str(item.quantity))).quantize(CENTS, ROUND_HALF_UP)
        items.append(item.model_copy(update={"subtotal": subtotal}))
        total = subtotal if total is None else total + subtotal
    return items, total if total is not None else order.total_amount


# --- payment -----------------------------------------------------------------


def register_payment(
    order: Order,
    user: User,
    method: PaymentMethod,
    *,
    notes: str | None = None,
    now: dt.datetime | None = None,
) -> Order:
    """Record how a delivered order was paid.

    Cash marks the order paid; a transfer waits for coordinator verification.
    """

    _require_status(order, OrderStatus.DELIVERED)
    _require_unclaimed(order, user)
    if order.is_paid:
        raise PreconditionFailed("El pago ya fue registrado")
    if method is PaymentMethod.CASH:
        return _with_history(
            order, user, "Pago en efectivo registrado", notes, now,
            payment_method=method, is_paid=True, awaiting_payment_verification=False,
        )
    return _with_history(
        order, user, "Transferencia informada, pendiente de verificación", notes, now,
        payment_method=method, is_paid=False, awaiting_payment_verification=True,
    )


def verify_transfer(order: Order, user: User, *, notes: str | None = None, now: dt.datetime | None = None) -> Order:
    _require_role(user, _COORDINATOR)
    if not order.awaiting_payment_verification:
        raise PreconditionFailed("No hay transferencias pendientes de verificación")
    return _with_history(
        order, user, "Transferencia verificada", notes, now,
        is_paid=True, awaiting_payment_verification=False,
    )


# --- picking and returns -----------------------------------------------------


def check_item(order: Order, item_id: str, user: User, *, checked: bool = True) -> Order:
    """Tick a line item during picking. Not audited."""

    _require_status(order, OrderStatus.DRAFTING)
    _require_role(user, _OPERATOR)
    _require_unclaimed(order, user)
    updated = order.model_copy(deep=True)
    item = updated.find_item(item_id)
    if item is None:
        raise PreconditionFailed(f"Producto {item_id} no está en el pedido")
    item.is_checked = checked
    return updated


def record_shortage(
    order: Order,
    item_id: str,
    picked_quantity: float,
    user: User,
    *,
    notes: str | None = None,
    now: dt.datetime | None = None,
) -> Order:
    """Record that only ``picked_quantity`` of an item could be picked."""

    _require_status(order, OrderStatus.DRAFTING)
    _require_role(user, _OPERATOR)
    _require_unclaimed(order, user)
    updated = order.model_copy(deep=True)
    item = updated.find_item(item_id)
    if item is None:
        raise PreconditionFailed(f"Producto {item_id} no está en el pedido")
    original = item.original_quantity if item.original_quantity is not None else item.quantity
    if picked_quantity < 0 or picked_quantity > original:
        raise PreconditionFailed("La cantidad armada no puede superar la cantidad pedida")

    item.original_quantity = original
    item.quantity = picked_quantity
    item.is_checked = True
    updated.missing_items = [m for m in updated.missing_items if m.product_id != item.id]
    shortage = original - picked_quantity
    if shortage > 0:
        updated.missing_items.append(
            MissingItem(product_id=item.id, product_name=item.name, code=item.code, quantity=shortage)
        )
        action = f"Faltante registrado: {item.name} ({shortage:g})"
    else:
        action = f"Faltante resuelto: {item.name}"
    updated.history.append(history_entry(user, action, notes=notes, now=now))
    return updated


def record_return(
    order: Order,
    item_id: str,
    quantity: float,
    user: User,
    *,
    reason: str | None = None,
    now: dt.datetime | None = None,
) -> Order:
    _require_status(order, OrderStatus.SHIPPING, OrderStatus.DELIVERED)
    _require_unclaimed(order, user)
    item = order.find_item(item_id)
    if item is None:
        raise PreconditionFailed(f"Producto {item_id} no está en el pedido")
    already = sum(r.quantity for r in order.returned_items if r.product_id == item_id)
    if quantity <= 0 or already + quantity > item.quantity:
        raise PreconditionFailed("La cantidad devuelta supera la cantidad entregada")
    returned = ReturnedItem(
        product_id=item.id, product_name=item.name, code=item.code, quantity=quantity, reason=reason
    )
    updated = order.model_copy(deep=True)
    updated.returned_items.append(returned)
    updated.history.append(
        history_entry(user, f"Devolución registrada: {item.name} ({quantity:g})", notes=reason, now=now)
    )
    return updated


# --- claims ------------------------------------------------------------------


def should_claim(order: Order, user: User) -> bool:
    return (
        user.role is Role.OPERATOR
        and order.status is OrderStatus.DRAFTING
        and not order.currently_working_by
    )


def can_edit(order: Order, user: User) -> bool:
    if user.role is Role.COORDINATOR:
        return True
    return not order.currently_working_by or order.currently_working_by == user.name


def claim(order: Order, user: User, *, now: dt.datetime | None = None) -> Order:
    if user.role is not Role.OPERATOR:
        return order
    _require_unclaimed(order, user)
    return order.model_copy(
        update={"currently_working_by": user.name, "working_start_time": now or utcnow()}
    )


def release(order: Order, user_name: str | None = None) -> Order:
    """Drop the claim. With ``user_name`` only that user's claim is dropped."""

    claimant = order.currently_working_by
    if claimant is None or (user_name and claimant != user_name):
        return order
    return order.model_copy(update={"currently_working_by": None, "working_start_time": None})


def working_minutes(order: Order, *, now: dt.datetime | None = None) -> int | None:
    if order.working_start_time is None:
        return None
    elapsed = (now or utcnow()) - order.working_start_time
    return int(elapsed.total_seconds() // 60)


# --- derived views -----------------------------------------------------------


def bucket_of(order: Order) -> Bucket:
    if order.status is OrderStatus.PAID:
        return Bucket.COMPLETED
    if order.status is OrderStatus.DELIVERED and not order.is_paid:
        return Bucket.AWAITING_PAYMENT
    return Bucket.ACTIVE


def partition(orders: Iterable[Order]) -> Buckets:
    buckets = Buckets([], [], [])
    for order in orders:
        getattr(buckets, bucket_of(order).value).append(order)
    return buckets


def next_action(order: Order, user: User) -> NextAction | None:
    """Suggested next step for ``user`` on ``order``, or ``None``."""

    if order.status is TERMINAL_STATUS:
        return None
    if not can_edit(order, user):
        return None

    status = order.status
    if user.role is Role.OPERATOR:
        if status is OrderStatus.DRAFTING:
            return NextAction("Armar Pedido", OrderStatus.PICKING_DONE)
        if status is OrderStatus.PICKING_DONE and order.armed_by != user.name:
            return NextAction("Controlar Armado", OrderStatus.PICKING_VERIFIED)
        if status is OrderStatus.INVOICED:
            return NextAction("Controlar Factura", OrderStatus.INVOICE_VERIFIED)
        if status is OrderStatus.INVOICE_VERIFIED:
            return NextAction("Marcar En Tránsito", OrderStatus.SHIPPING)
        if status is OrderStatus.SHIPPING:
            return NextAction("Marcar Entregado", OrderStatus.DELIVERED)
        if status is OrderStatus.DELIVERED and not order.is_paid and not order.awaiting_payment_verification:
            return NextAction("Procesar Pago")
        if status is OrderStatus.DELIVERED and order.is_paid:
            return NextAction("Marcar Pagado", OrderStatus.PAID)
    if user.role is Role.COORDINATOR:
        if status is OrderStatus.DRAFTING:
            return NextAction("Editar Presupuesto")
        if status is OrderStatus.PICKING_VERIFIED:
            return NextAction("Facturar", OrderStatus.INVOICED)
        if order.awaiting_payment_verification:
            return NextAction("Verificar Transferencia")
        if status is OrderStatus.DELIVERED and order.is_paid:
            return NextAction("Marcar Pagado", OrderStatus.PAID)
    return None
