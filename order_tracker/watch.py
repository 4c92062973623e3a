"""Console client that keeps an order board synchronised.

Loads active orders first and the full history in the background, then follows
backend changes (or polls local storage) and logs every notification the
selected user would see.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from .config import Settings, build_gateway
from .notifications import NotificationTracker
from .schemas import Notification, Order
from .session import SessionStore, resolve_session_user
from .state_machine import next_action, partition
from .sync import OrderSynchronizer

LOGGER = logging.getLogger("order-tracker.watch")


def _log_notification(notification: Notification) -> None:
    level = logging.WARNING if notification.kind in {"error", "warning"} else logging.INFO
    LOGGER.log(level, "[%s] %s", notification.title, notification.message)


async def run(user_name: str | None = None, *, once: bool = False) -> None:
    settings = Settings.from_env()
    gateway = build_gateway(settings)

    users = await gateway.fetch_users()
    store = SessionStore(settings.data_dir)
    if user_name:
        user = next((u for u in users if u.name == user_name), None)
        if user is None:
            raise SystemExit(f"Usuario desconocido: {user_name}")
        store.save(user)
    else:
        user = resolve_session_user(users, store)
        if user is None:
            raise SystemExit("No hay usuarios disponibles")
    LOGGER.info("Sesión de %s (%s), modo %s", user.name, user.role.value, gateway.mode)

    tracker = NotificationTracker(user)

    def on_orders(orders: list[Order]) -> None:
        for notification in tracker.observe(orders):
            _log_notification(notification)
        buckets = partition(orders)
        LOGGER.info(
            "%d activos, %d esperando pago, %d completados",
            len(buckets.active),
            len(buckets.awaiting_payment),
            len(buckets.completed),
        )
        for order in buckets.active:
            action = next_action(order, user)
            if action is not None:
                LOGGER.info("  %s (%s): %s", order.client_name, order.id, action.label)

    synchronizer = OrderSynchronizer(
        gateway, on_orders, poll_interval=settings.poll_interval, debounce=settings.debounce
    )
    try:
        await synchronizer.initial_load()
        if once:
            if synchronizer.full_load is not None:
                await synchronizer.full_load
            return
        async with synchronizer:
            await asyncio.Event().wait()
    finally:
        await synchronizer.stop()
        await gateway.backend.aclose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Sigue el tablero de pedidos")
    parser.add_argument("--user", help="Nombre del usuario de la sesión")
    parser.add_argument("--once", action="store_true", help="Carga una vez y termina")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    try:
        asyncio.run(run(args.user, once=args.once))
    except KeyboardInterrupt:  # pragma: no cover
        LOGGER.info("Detenido")


if __name__ == "__main__":  # pragma: no cover
    main()
