"""HTTP client for the order store service (:mod:`order_tracker.api`)."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, AsyncIterator

import httpx
from pydantic import TypeAdapter, ValidationError

from ..errors import BackendError, ClaimConflict, OrderNotFound
from ..schemas import ChangeEvent, Order, User, WorkingRequest
from .base import Backend, FetchScope

logger = logging.getLogger("order-tracker.remote")

_orders_adapter = TypeAdapter(list[Order])
_users_adapter = TypeAdapter(list[User])


def _safe_detail(response: httpx.Response, default: str) -> tuple[str, str | None]:
    try:
        data = response.json()
    except ValueError:
        return default, None
    if not isinstance(data, dict):
        return default, None
    detail = data.get("detail")
    code = data.get("code")
    return (detail if isinstance(detail, str) else default), (code if isinstance(code, str) else None)


class RemoteBackend(Backend):
    name = "remote"

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @property
    def supports_push(self) -> bool:
        return True

    async def _request(self, method: str, path: str, *, order_id: str | None = None, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise BackendError(f"No se pudo contactar al servidor: {exc}") from exc
        if response.status_code < 400:
            return response
        detail, code = _safe_detail(response, f"Error del servidor ({response.status_code})")
        if code == OrderNotFound.code and order_id is not None:
            raise OrderNotFound(order_id)
        if code == ClaimConflict.code and order_id is not None:
            claimant = None
            try:
                claimant = response.json().get("claimant")
            except ValueError:
                pass
            raise ClaimConflict(order_id, claimant)
        raise BackendError(detail)

    async def load_orders(self, scope: FetchScope, limit: int) -> list[Order]:
        response = await self._request("GET", "/orders", params={"scope": scope.value, "limit": limit})
        try:
            return _orders_adapter.validate_python(response.json())
        except (ValueError, ValidationError) as exc:
            raise BackendError("Respuesta inválida del servidor") from exc

    async def insert_order(self, order: Order) -> None:
        await self._request("POST", "/orders", json=order.model_dump(mode="json"))

    async def replace_order(self, order: Order) -> None:
        await self._request("PUT", f"/orders/{order.id}", order_id=order.id, json=order.model_dump(mode="json"))

    async def delete_order(self, order_id: str) -> None:
        await self._request("DELETE", f"/orders/{order_id}", order_id=order_id)

    async def list_users(self) -> list[User]:
        response = await self._request("GET", "/users")
        try:
            return _users_adapter.validate_python(response.json())
        except (ValueError, ValidationError) as exc:
            raise BackendError("Respuesta inválida del servidor") from exc

    async def set_working(self, order_id: str, user_name: str, started_at: dt.datetime) -> None:
        payload = WorkingRequest(user_name=user_name, started_at=started_at)
        await self._request(
            "POST", f"/orders/{order_id}/working", order_id=order_id, json=payload.model_dump(mode="json")
        )

    async def clear_working(self, order_id: str, user_name: str | None = None) -> None:
        params = {"user_name": user_name} if user_name else None
        await self._request("DELETE", f"/orders/{order_id}/working", order_id=order_id, params=params)

    async def changes(self) -> AsyncIterator[ChangeEvent]:
        """Row-level change events read from the server-sent-events stream."""

        try:
            async with self._client.stream("GET", "/changes/stream", timeout=None) as response:
                if response.status_code >= 400:
                    raise BackendError(f"Suscripción rechazada ({response.status_code})")
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        yield ChangeEvent.model_validate_json(line[len("data:"):].strip())
                    except ValidationError:
                        logger.warning("Ignoring malformed change event: %s", line)
        except httpx.HTTPError as exc:
            raise BackendError(f"Se perdió la conexión de cambios: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
