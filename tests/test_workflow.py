import asyncio

import pytest

from order_tracker.errors import IllegalTransition, OrderClaimed, OrderNotFound, PreconditionFailed, RoleNotAllowed
from order_tracker.gateway import PersistenceGateway
from order_tracker.schemas import LineItem, OrderDraft, OrderStatus, PaymentMethod
from order_tracker.workflow import OrderWorkflow


def _workflow(fake_backend_cls, *orders):
    backend = fake_backend_cls(list(orders))
    return backend, OrderWorkflow(PersistenceGateway(backend))


def test_open_claims_for_first_operator_only(fake_backend_cls, make_order, coordinator, operator_a, operator_b) -> None:
    order = make_order()
    backend, workflow = _workflow(fake_backend_cls, order)

    async def scenario():
        await workflow.gateway.fetch_orders()
        view_a = await workflow.open_order(order.id, operator_a)
        view_b = await workflow.open_order(order.id, operator_b)
        view_c = await workflow.open_order(order.id, coordinator)
        return view_a, view_b, view_c

    view_a, view_b, view_c = asyncio.run(scenario())
    assert view_a.claimed_by == "Camilo"
    assert view_a.editable is True
    assert view_b.claimed_by == "Camilo"
    assert view_b.editable is False
    assert view_c.editable is True
    assert backend.orders[order.id].currently_working_by == "Camilo"


def test_close_releases_only_own_claim(fake_backend_cls, make_order, operator_a, operator_b) -> None:
    order = make_order()
    backend, workflow = _workflow(fake_backend_cls, order)

    async def scenario():
        await workflow.gateway.fetch_orders()
        await workflow.open_order(order.id, operator_a)
        assert await workflow.close_order(order.id, operator_b)
        still_claimed = backend.orders[order.id].currently_working_by
        assert await workflow.close_order(order.id, operator_a)
        return still_claimed

    assert asyncio.run(scenario()) == "Camilo"
    assert backend.orders[order.id].currently_working_by is None
    assert workflow.gateway.cache.find(order.id).currently_working_by is None


def test_transition_blocked_while_claimed_by_someone_else(fake_backend_cls, make_order, operator_a, operator_b) -> None:
    order = make_order(items=[LineItem(id="PROD-1", name="Tornillos", quantity=1, original_quantity=1, is_checked=True)])
    backend, workflow = _workflow(fake_backend_cls, order)

    async def scenario():
        await workflow.gateway.fetch_orders()
        await workflow.open_order(order.id, operator_a)
        with pytest.raises(OrderClaimed):
            await workflow.transition(order.id, OrderStatus.PICKING_DONE, operator_b)
        return await workflow.transition(order.id, OrderStatus.PICKING_DONE, operator_a)

    assert asyncio.run(scenario()) is True
    stored = backend.orders[order.id]
    assert stored.status is OrderStatus.PICKING_DONE
    assert stored.armed_by == "Camilo"
    assert stored.currently_working_by is None
    assert len(stored.history) == 2


def test_rejected_transition_writes_nothing(fake_backend_cls, make_order, coordinator) -> None:
    order = make_order()
    backend, workflow = _workflow(fake_backend_cls, order)

    async def scenario():
        await workflow.gateway.fetch_orders()
        with pytest.raises(RoleNotAllowed):
            await workflow.transition(order.id, OrderStatus.PICKING_DONE, coordinator)

    asyncio.run(scenario())
    assert backend.orders[order.id] == order
    assert len(workflow.gateway.cache.find(order.id).history) == 1


def test_only_coordinator_creates_and_deletes(fake_backend_cls, make_order, coordinator, operator_a) -> None:
    order = make_order()
    backend, workflow = _workflow(fake_backend_cls, order)
    draft = OrderDraft(client_name="Acme", items=[LineItem(name="Tornillos", quantity=10)])

    async def scenario():
        with pytest.raises(RoleNotAllowed):
            await workflow.create_order(draft, operator_a)
        with pytest.raises(RoleNotAllowed):
            await workflow.delete_order(order.id, operator_a)
        assert await workflow.create_order(draft, coordinator)
        assert await workflow.delete_order(order.id, coordinator)

    asyncio.run(scenario())
    assert [o.client_name for o in backend.orders.values()] == ["Acme"]
    assert order.id not in backend.orders


def test_unknown_order_raises_not_found(fake_backend_cls, operator_a) -> None:
    _, workflow = _workflow(fake_backend_cls)
    with pytest.raises(OrderNotFound):
        asyncio.run(workflow.open_order("PED-nope", operator_a))


def test_payment_flow_through_workflow(fake_backend_cls, make_order, coordinator, operator_a) -> None:
    order = make_order(OrderStatus.DELIVERED)
    backend, workflow = _workflow(fake_backend_cls, order)

    async def scenario():
        await workflow.gateway.fetch_orders()
        await workflow.register_payment(order.id, operator_a, PaymentMethod.TRANSFER)
        with pytest.raises(PreconditionFailed):
            await workflow.transition(order.id, OrderStatus.PAID, operator_a)
        await workflow.verify_transfer(order.id, coordinator)
        return await workflow.transition(order.id, OrderStatus.PAID, coordinator)

    assert asyncio.run(scenario()) is True
    stored = backend.orders[order.id]
    assert stored.status is OrderStatus.PAID
    assert [e.user for e in stored.history[1:]] == ["Camilo", "Riki", "Riki"]


def test_picking_operations_persist(fake_backend_cls, make_order, operator_a) -> None:
    order = make_order()
    backend, workflow = _workflow(fake_backend_cls, order)

    async def scenario():
        await workflow.gateway.fetch_orders()
        await workflow.record_shortage(order.id, "PROD-1", 6, operator_a)
        await workflow.transition(order.id, OrderStatus.PICKING_DONE, operator_a)

    asyncio.run(scenario())
    stored = backend.orders[order.id]
    assert stored.missing_items[0].quantity == 4
    assert stored.status is OrderStatus.PICKING_DONE


def test_edit_order_appends_history_and_protects_status(fake_backend_cls, make_order, coordinator) -> None:
    order = make_order()
    backend, workflow = _workflow(fake_backend_cls, order)

    async def scenario():
        await workflow.gateway.fetch_orders()
        with pytest.raises(IllegalTransition):
            await workflow.edit_order(order.model_copy(update={"status": OrderStatus.PAID}), coordinator)
        return await workflow.edit_order(order.model_copy(update={"client_address": "Calle 2"}), coordinator)

    assert asyncio.run(scenario()) is True
    stored = backend.orders[order.id]
    assert stored.client_address == "Calle 2"
    assert stored.last_history.action == "Pedido editado"
