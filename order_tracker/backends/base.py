"""Persistence backend interface."""

from __future__ import annotations

import abc
import datetime as dt
import enum
from typing import AsyncIterator

from ..schemas import ChangeEvent, Order, User


class FetchScope(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ALL = "all"


class Backend(abc.ABC):
    """Storage for order aggregates.

    Implementations raise :class:`~order_tracker.errors.BackendError` on any
    failure; they never retry and never touch the order cache.
    """

    name: str = "backend"

    @property
    def supports_push(self) -> bool:
        """Whether :meth:`changes` delivers row-level change notifications."""

        return False

    @abc.abstractmethod
    async def load_orders(self, scope: FetchScope, limit: int) -> list[Order]:
        """Orders newest first, restricted to ``scope`` and capped at ``limit``."""

    @abc.abstractmethod
    async def insert_order(self, order: Order) -> None:
        ...

    @abc.abstractmethod
    async def replace_order(self, order: Order) -> None:
        """Overwrite header and nested collections; append unseen history entries."""

    @abc.abstractmethod
    async def delete_order(self, order_id: str) -> None:
        ...

    @abc.abstractmethod
    async def list_users(self) -> list[User]:
        ...

    @abc.abstractmethod
    async def set_working(self, order_id: str, user_name: str, started_at: dt.datetime) -> None:
        """Claim the order for ``user_name`` unless someone else holds it."""

    @abc.abstractmethod
    async def clear_working(self, order_id: str, user_name: str | None = None) -> None:
        """Release the claim. A claim held by another user is left untouched."""

    def changes(self) -> AsyncIterator[ChangeEvent]:
        raise NotImplementedError(f"{self.name} does not publish changes")

    async def aclose(self) -> None:
        return None
