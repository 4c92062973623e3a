import pytest
from fastapi.testclient import TestClient

from order_tracker import state_machine as sm
from order_tracker.api import deps
from order_tracker.api.main import app
from order_tracker.api.routers import orders as orders_router
from order_tracker.schemas import Order, OrderStatus, utcnow


@pytest.fixture()
def published(monkeypatch: pytest.MonkeyPatch) -> list[tuple]:
    events: list[tuple] = []

    def record(table, type_, record_id=None):
        events.append((table, type_, record_id))

    monkeypatch.setattr(orders_router.feed, "publish", record)
    return events


@pytest.fixture()
def client() -> TestClient:
    deps.configure("sqlite+aiosqlite://")
    with TestClient(app) as test_client:
        yield test_client


def _post(client: TestClient, order: Order):
    return client.post("/orders", json=order.model_dump(mode="json"))


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_default_users_are_seeded(client: TestClient) -> None:
    users = client.get("/users").json()
    assert [u["name"] for u in users] == ["Camilo", "Eze", "Jesus", "Riki", "chino"]
    assert {u["role"] for u in users} == {"vale", "armador"}


def test_create_and_fetch_order(client: TestClient, make_order, published) -> None:
    order = make_order()
    response = _post(client, order)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "en_armado"
    assert body["items"][0]["original_quantity"] == 10
    assert len(body["history"]) == 1

    fetched = Order.model_validate(client.get(f"/orders/{order.id}").json())
    assert fetched.model_dump() == order.model_dump()
    assert ("orders", "INSERT", order.id) in published

    duplicate = _post(client, order)
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "order.exists"


def test_missing_order_is_404_with_code(client: TestClient) -> None:
    response = client.get("/orders/PED-nope")
    assert response.status_code == 404
    assert response.json()["code"] == "order.not_found"


def test_scope_filters_paid_orders(client: TestClient, make_order, published) -> None:
    active = make_order()
    paid = make_order(OrderStatus.PAID, is_paid=True)
    for order in (active, paid):
        _post(client, order)

    def ids(scope):
        return [o["id"] for o in client.get("/orders", params={"scope": scope}).json()]

    assert ids("active") == [active.id]
    assert ids("completed") == [paid.id]
    assert set(ids("all")) == {active.id, paid.id}
    assert len(client.get("/orders", params={"limit": 1}).json()) == 1


def test_put_replaces_collections_and_appends_history(client: TestClient, make_order, operator_a, published) -> None:
    order = make_order()
    _post(client, order)

    shorted = sm.record_shortage(order, "PROD-1", 7, operator_a)
    response = client.put(f"/orders/{order.id}", json=shorted.model_dump(mode="json"))
    assert response.status_code == 200
    body = response.json()
    assert body["items"][0]["quantity"] == 7
    assert body["missing_items"][0]["quantity"] == 3
    assert len(body["history"]) == 2

    # a payload without the shortage entry does not erase it
    stale = order.model_copy(update={"client_name": "Acme SRL"})
    body = client.put(f"/orders/{order.id}", json=stale.model_dump(mode="json")).json()
    assert body["client_name"] == "Acme SRL"
    assert body["missing_items"] == []
    assert [h["id"] for h in body["history"]] == [h.id for h in shorted.history]
    assert ("order_history", "INSERT", order.id) in published


def test_put_rejects_mismatched_id(client: TestClient, make_order) -> None:
    order = make_order()
    _post(client, order)
    response = client.put("/orders/PED-otro", json=order.model_dump(mode="json"))
    assert response.status_code == 400
    assert response.json()["code"] == "order.id_mismatch"


def test_delete_removes_order_and_owned_rows(client: TestClient, make_order, published) -> None:
    order = make_order()
    _post(client, order)

    assert client.delete(f"/orders/{order.id}").status_code == 204
    assert client.get(f"/orders/{order.id}").status_code == 404
    assert client.delete(f"/orders/{order.id}").status_code == 204
    assert published[-1] == ("orders", "DELETE", order.id)

    # line item ids may repeat across orders
    again = make_order()
    assert _post(client, again).status_code == 201


def test_working_claim_is_compare_and_set(client: TestClient, make_order, published) -> None:
    order = make_order()
    _post(client, order)
    started = utcnow().isoformat()

    claim = client.post(f"/orders/{order.id}/working", json={"user_name": "Camilo", "started_at": started})
    assert claim.status_code == 204
    again = client.post(f"/orders/{order.id}/working", json={"user_name": "Camilo", "started_at": started})
    assert again.status_code == 204

    conflict = client.post(f"/orders/{order.id}/working", json={"user_name": "Jesus", "started_at": started})
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "order.claim_conflict"
    assert conflict.json()["claimant"] == "Camilo"

    missing = client.post("/orders/PED-nope/working", json={"user_name": "Jesus"})
    assert missing.status_code == 404

    stored = client.get(f"/orders/{order.id}").json()
    assert stored["currently_working_by"] == "Camilo"
    assert stored["working_start_time"] is not None


def test_clear_working_only_drops_matching_claim(client: TestClient, make_order, published) -> None:
    order = make_order()
    _post(client, order)
    client.post(f"/orders/{order.id}/working", json={"user_name": "Camilo"})
    published.clear()

    assert client.delete(f"/orders/{order.id}/working", params={"user_name": "Jesus"}).status_code == 204
    assert client.get(f"/orders/{order.id}").json()["currently_working_by"] == "Camilo"
    assert published == []

    assert client.delete(f"/orders/{order.id}/working", params={"user_name": "Camilo"}).status_code == 204
    stored = client.get(f"/orders/{order.id}").json()
    assert stored["currently_working_by"] is None
    assert stored["working_start_time"] is None
    assert published == [("orders", "UPDATE", order.id)]

    # releasing an unclaimed order is a no-op
    assert client.delete(f"/orders/{order.id}/working").status_code == 204
    assert client.delete("/orders/PED-nope/working").status_code == 204
    assert len(published) == 1


def test_validation_errors_use_common_payload(client: TestClient) -> None:
    response = client.post("/orders", json={"id": "PED-1"})
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"
