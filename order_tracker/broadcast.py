"""In-process notification channel between local observers.

For applications that host several user sessions in one process: pass the
same broadcaster to each :class:`~order_tracker.gateway.PersistenceGateway`
(see :func:`~order_tracker.config.build_gateway`) and subscribe every session
under its user name. The console watcher runs a single session and does not
use it.

Delivery is best effort: a failing handler is logged and skipped, and nothing
is queued for observers that subscribe later.
"""

from __future__ import annotations

import logging
from typing import Callable

from .schemas import Notification

logger = logging.getLogger("order-tracker.broadcast")

Handler = Callable[[Notification], None]


class Broadcaster:
    def __init__(self) -> None:
        self._subscribers: dict[int, tuple[str | None, Handler]] = {}
        self._next_token = 0

    def subscribe(self, user_name: str | None, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``user_name``; returns the unsubscribe callable."""

        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = (user_name, handler)

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, notification: Notification) -> int:
        delivered = 0
        for user_name, handler in list(self._subscribers.values()):
            if notification.exclude_user and notification.exclude_user == user_name:
                continue
            try:
                handler(notification)
            except Exception:  # pragma: no cover - best effort delivery
                logger.exception("Broadcast handler failed for %s", notification.id)
                continue
            delivered += 1
        return delivered
