"""Routers for the order aggregate and its owned collections."""

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ... import schemas
from ...backends.base import FetchScope
from ...errors import ClaimConflict, OrderNotFound
from .. import models
from ..changes import feed
from ..deps import get_session
from ..errors import api_error

router = APIRouter()

_OWNED_MODELS = (models.OrderItem, models.MissingItem, models.ReturnedItem)


def _not_found() -> Exception:
    return api_error(status.HTTP_404_NOT_FOUND, OrderNotFound.code, "Pedido no encontrado")


async def _get_order(session: AsyncSession, order_id: str) -> models.Order:
    result = await session.execute(
        select(models.Order)
        .where(models.Order.id == order_id)
        .options(
            selectinload(models.Order.items),
            selectinload(models.Order.missing_items),
            selectinload(models.Order.returned_items),
            selectinload(models.Order.history),
        )
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise _not_found()
    return order


def _build_order(row: models.Order) -> schemas.Order:
    return schemas.Order(
        id=row.id,
        client_name=row.client_name,
        client_address=row.client_address or "",
        status=row.status,
        payment_method=row.payment_method,
        is_paid=row.is_paid,
        created_at=row.created_at,
        armed_by=row.armed_by,
        controlled_by=row.controlled_by,
        awaiting_payment_verification=row.awaiting_payment_verification,
        initial_notes=row.initial_notes,
        currently_working_by=row.currently_working_by,
        working_start_time=row.working_start_time,
        total_amount=row.total_amount,
        items=[
            schemas.LineItem(
                id=item.id,
                code=item.code,
                name=item.name,
                quantity=item.quantity,
                original_quantity=item.original_quantity,
                is_checked=item.is_checked,
                unit_price=item.unit_price,
                subtotal=item.subtotal,
            )
            for item in row.items
        ],
        missing_items=[
            schemas.MissingItem(
                product_id=m.product_id, product_name=m.product_name, code=m.code, quantity=m.quantity
            )
            for m in row.missing_items
        ],
        returned_items=[
            schemas.ReturnedItem(
                product_id=r.product_id,
                product_name=r.product_name,
                code=r.code,
                quantity=r.quantity,
                reason=r.reason,
            )
            for r in row.returned_items
        ],
        history=[
            schemas.HistoryEntry(id=h.id, action=h.action, user=h.user_name, timestamp=h.created_at, notes=h.notes)
            for h in row.history
        ],
    )


def _header_values(payload: schemas.Order) -> dict[str, Any]:
    return {
        "client_name": payload.client_name,
        "client_address": payload.client_address,
        "status": payload.status.value,
        "payment_method": payload.payment_method.value if payload.payment_method else None,
        "is_paid": payload.is_paid,
        "armed_by": payload.armed_by,
        "controlled_by": payload.controlled_by,
        "awaiting_payment_verification": payload.awaiting_payment_verification,
        "initial_notes": payload.initial_notes,
        "currently_working_by": payload.currently_working_by,
        "working_start_time": payload.working_start_time,
        "total_amount": payload.total_amount,
    }


def _owned_rows(payload: schemas.Order) -> list[Any]:
    rows: list[Any] = []
    for position, item in enumerate(payload.items):
        rows.append(
            models.OrderItem(
                id=item.id,
                order_id=payload.id,
                position=position,
                code=item.code,
                name=item.name,
                quantity=item.quantity,
                original_quantity=item.original_quantity,
                is_checked=item.is_checked,
                unit_price=item.unit_price,
                subtotal=item.subtotal,
            )
        )
    for position, missing in enumerate(payload.missing_items):
        rows.append(
            models.MissingItem(
                order_id=payload.id,
                position=position,
                product_id=missing.product_id,
                product_name=missing.product_name,
                code=missing.code,
                quantity=missing.quantity,
            )
        )
    for position, returned in enumerate(payload.returned_items):
        rows.append(
            models.ReturnedItem(
                order_id=payload.id,
                position=position,
                product_id=returned.product_id,
                product_name=returned.product_name,
                code=returned.code,
                quantity=returned.quantity,
                reason=returned.reason,
            )
        )
    return rows


def _history_row(order_id: str, entry: schemas.HistoryEntry) -> models.HistoryEntry:
    return models.HistoryEntry(
        id=entry.id,
        order_id=order_id,
        action=entry.action,
        user_name=entry.user,
        notes=entry.notes,
        created_at=entry.timestamp,
    )


@router.get("", response_model=list[schemas.Order])
async def list_orders(
    scope: FetchScope = Query(FetchScope.ALL),
    limit: int = Query(200, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> list[schemas.Order]:
    query = (
        select(models.Order)
        .options(
            selectinload(models.Order.items),
            selectinload(models.Order.missing_items),
            selectinload(models.Order.returned_items),
            selectinload(models.Order.history),
        )
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
        .limit(limit)
    )
    if scope is FetchScope.ACTIVE:
        query = query.where(models.Order.status != schemas.OrderStatus.PAID.value)
    elif scope is FetchScope.COMPLETED:
        query = query.where(models.Order.status == schemas.OrderStatus.PAID.value)
    result = await session.execute(query)
    return [_build_order(row) for row in result.scalars().all()]


@router.get("/{order_id}", response_model=schemas.Order)
async def get_order(order_id: str, session: AsyncSession = Depends(get_session)) -> schemas.Order:
    return _build_order(await _get_order(session, order_id))


@router.post("", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
async def create_order(payload: schemas.Order, session: AsyncSession = Depends(get_session)) -> schemas.Order:
    if await session.get(models.Order, payload.id) is not None:
        raise api_error(status.HTTP_409_CONFLICT, "order.exists", "El pedido ya existe")
    session.add(models.Order(id=payload.id, created_at=payload.created_at, **_header_values(payload)))
    session.add_all(_owned_rows(payload))
    session.add_all(_history_row(payload.id, entry) for entry in payload.history)
    await session.commit()

    feed.publish(models.Order.__tablename__, "INSERT", payload.id)
    for table in models.OWNED_TABLES:
        feed.publish(table, "INSERT", payload.id)
    return _build_order(await _get_order(session, payload.id))


@router.put("/{order_id}", response_model=schemas.Order)
async def replace_order(
    order_id: str,
    payload: schemas.Order,
    session: AsyncSession = Depends(get_session),
) -> schemas.Order:
    if payload.id != order_id:
        raise api_error(status.HTTP_400_BAD_REQUEST, "order.id_mismatch", "El id del pedido no coincide")
    row = await session.get(models.Order, order_id)
    if row is None:
        raise _not_found()

    for key, value in _header_values(payload).items():
        setattr(row, key, value)
    for model in _OWNED_MODELS:
        await session.execute(delete(model).where(model.order_id == order_id))
    session.add_all(_owned_rows(payload))

    # history is append-only: only unseen entry ids are inserted
    result = await session.execute(select(models.HistoryEntry.id).where(models.HistoryEntry.order_id == order_id))
    known = set(result.scalars().all())
    new_entries = [entry for entry in payload.history if entry.id not in known]
    session.add_all(_history_row(order_id, entry) for entry in new_entries)
    await session.commit()

    feed.publish(models.Order.__tablename__, "UPDATE", order_id)
    for model in _OWNED_MODELS:
        feed.publish(model.__tablename__, "UPDATE", order_id)
    if new_entries:
        feed.publish(models.HistoryEntry.__tablename__, "INSERT", order_id)
    return _build_order(await _get_order(session, order_id))


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_order(order_id: str, session: AsyncSession = Depends(get_session)) -> None:
    if await session.get(models.Order, order_id) is None:
        return None
    for model in (*_OWNED_MODELS, models.HistoryEntry):
        await session.execute(delete(model).where(model.order_id == order_id))
    await session.execute(delete(models.Order).where(models.Order.id == order_id))
    await session.commit()
    feed.publish(models.Order.__tablename__, "DELETE", order_id)
    return None


@router.post("/{order_id}/working", status_code=status.HTTP_204_NO_CONTENT)
async def set_working(
    order_id: str,
    payload: schemas.WorkingRequest,
    session: AsyncSession = Depends(get_session),
) -> None:
    result = await session.execute(
        update(models.Order)
        .where(
            models.Order.id == order_id,
            or_(
                models.Order.currently_working_by.is_(None),
                models.Order.currently_working_by == payload.user_name,
            ),
        )
        .values(currently_working_by=payload.user_name, working_start_time=payload.started_at)
    )
    if result.rowcount == 0:
        row = await session.get(models.Order, order_id)
        if row is None:
            raise _not_found()
        raise api_error(
            status.HTTP_409_CONFLICT,
            ClaimConflict.code,
            f"{row.currently_working_by} está trabajando en este pedido",
            claimant=row.currently_working_by,
        )
    await session.commit()
    feed.publish(models.Order.__tablename__, "UPDATE", order_id)
    return None


@router.delete("/{order_id}/working", status_code=status.HTTP_204_NO_CONTENT)
async def clear_working(
    order_id: str,
    user_name: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
) -> None:
    conditions = [models.Order.id == order_id, models.Order.currently_working_by.is_not(None)]
    if user_name:
        conditions.append(models.Order.currently_working_by == user_name)
    result = await session.execute(
        update(models.Order).where(*conditions).values(currently_working_by=None, working_start_time=None)
    )
    await session.commit()
    if result.rowcount:
        feed.publish(models.Order.__tablename__, "UPDATE", order_id)
    return None
