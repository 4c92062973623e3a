import datetime as dt
import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Ensure the package is importable when running tests from a plain checkout
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from order_tracker.backends.base import Backend, FetchScope  # noqa: E402
from order_tracker.errors import BackendError, ClaimConflict, OrderNotFound  # noqa: E402
from order_tracker.ids import ORDER_PREFIX, generate_id  # noqa: E402
from order_tracker.schemas import LineItem, Order, OrderStatus, Role, User, utcnow  # noqa: E402
from order_tracker.session import DEFAULT_USERS  # noqa: E402
from order_tracker.state_machine import CREATED_ACTION, history_entry  # noqa: E402


@pytest.fixture()
def coordinator() -> User:
    return User(id="riki-1", name="Riki", role=Role.COORDINATOR)


@pytest.fixture()
def operator_a() -> User:
    return User(id="camilo-1", name="Camilo", role=Role.OPERATOR)


@pytest.fixture()
def operator_b() -> User:
    return User(id="jesus-1", name="Jesus", role=Role.OPERATOR)


def build_order(status: OrderStatus = OrderStatus.DRAFTING, **overrides) -> Order:
    created = overrides.pop("created_at", utcnow() - dt.timedelta(minutes=5))
    data = {
        "id": generate_id(ORDER_PREFIX),
        "client_name": "Acme",
        "client_address": "Av. Siempreviva 742",
        "items": [
            LineItem(id="PROD-1", code="T-10", name="Tornillos", quantity=10, original_quantity=10, unit_price=Decimal("2.50")),
        ],
        "status": status,
        "created_at": created,
        "history": [history_entry("Riki", CREATED_ACTION, now=created)],
    }
    data.update(overrides)
    return Order(**data)


@pytest.fixture()
def make_order():
    return build_order


class FakeBackend(Backend):
    """In-memory backend recording calls; ``fail`` makes every call raise."""

    name = "fake"

    def __init__(self, orders=None, *, push: bool = False, events=None) -> None:
        self.orders: dict[str, Order] = {o.id: o for o in (orders or [])}
        self.fail = False
        self.push = push
        self.events = list(events or [])
        self.load_calls: list[FetchScope] = []

    @property
    def supports_push(self) -> bool:
        return self.push

    def _check(self) -> None:
        if self.fail:
            raise BackendError("backend caído")

    async def load_orders(self, scope, limit):
        self.load_calls.append(scope)
        self._check()
        orders = sorted(self.orders.values(), key=lambda o: o.created_at, reverse=True)
        if scope is FetchScope.ACTIVE:
            orders = [o for o in orders if o.status is not OrderStatus.PAID]
        elif scope is FetchScope.COMPLETED:
            orders = [o for o in orders if o.status is OrderStatus.PAID]
        return orders[:limit]

    async def insert_order(self, order):
        self._check()
        self.orders[order.id] = order

    async def replace_order(self, order):
        self._check()
        if order.id not in self.orders:
            raise OrderNotFound(order.id)
        self.orders[order.id] = order

    async def delete_order(self, order_id):
        self._check()
        self.orders.pop(order_id, None)

    async def list_users(self):
        self._check()
        return list(DEFAULT_USERS)

    async def set_working(self, order_id, user_name, started_at):
        self._check()
        order = self.orders[order_id]
        if order.currently_working_by and order.currently_working_by != user_name:
            raise ClaimConflict(order_id, order.currently_working_by)
        self.orders[order_id] = order.model_copy(
            update={"currently_working_by": user_name, "working_start_time": started_at}
        )

    async def clear_working(self, order_id, user_name=None):
        self._check()
        order = self.orders.get(order_id)
        if order is None or order.currently_working_by is None:
            return
        if user_name and order.currently_working_by != user_name:
            return
        self.orders[order_id] = order.model_copy(update={"currently_working_by": None, "working_start_time": None})

    async def changes(self):
        for event in self.events:
            yield event


@pytest.fixture()
def fake_backend_cls():
    return FakeBackend
