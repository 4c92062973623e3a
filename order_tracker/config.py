"""Environment-driven configuration.

The backend mode is decided once, when the gateway is built: an http(s)
``ORDER_TRACKER_API_URL`` selects the remote order store, anything else the
on-device JSON storage.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .backends import Backend, LocalBackend, RemoteBackend
from .broadcast import Broadcaster
from .cache import DEFAULT_TTL, OrderCache
from .gateway import ACTIVE_LIMIT, COMPLETED_LIMIT, FULL_LIMIT, PersistenceGateway
from .sync import DEBOUNCE, POLL_INTERVAL

logger = logging.getLogger("order-tracker")


class BackendMode(str, enum.Enum):
    REMOTE = "remote"
    LOCAL = "local"


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class Settings:
    api_url: str | None = None
    api_timeout: float = 10.0
    data_dir: Path = Path(".order-tracker")
    cache_ttl: float = DEFAULT_TTL
    poll_interval: float = POLL_INTERVAL
    debounce: float = DEBOUNCE
    active_limit: int = ACTIVE_LIMIT
    full_limit: int = FULL_LIMIT
    completed_limit: int = COMPLETED_LIMIT

    @property
    def mode(self) -> BackendMode:
        if self.api_url and self.api_url.startswith(("http://", "https://")):
            return BackendMode.REMOTE
        return BackendMode.LOCAL

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_url=os.getenv("ORDER_TRACKER_API_URL") or None,
            api_timeout=_env_float("ORDER_TRACKER_API_TIMEOUT", 10.0),
            data_dir=Path(os.getenv("ORDER_TRACKER_DATA_DIR", ".order-tracker")),
            cache_ttl=_env_float("ORDER_TRACKER_CACHE_TTL", DEFAULT_TTL),
            poll_interval=_env_float("ORDER_TRACKER_POLL_INTERVAL", POLL_INTERVAL),
            debounce=_env_float("ORDER_TRACKER_DEBOUNCE", DEBOUNCE),
            active_limit=_env_int("ORDER_TRACKER_ACTIVE_LIMIT", ACTIVE_LIMIT),
            full_limit=_env_int("ORDER_TRACKER_FULL_LIMIT", FULL_LIMIT),
            completed_limit=_env_int("ORDER_TRACKER_COMPLETED_LIMIT", COMPLETED_LIMIT),
        )


def build_backend(settings: Settings) -> Backend:
    if settings.mode is BackendMode.REMOTE:
        logger.info("Order store connected at %s", settings.api_url)
        return RemoteBackend(settings.api_url or "", timeout=settings.api_timeout)
    logger.warning("No order store configured, using local storage in %s", settings.data_dir)
    return LocalBackend(settings.data_dir)


def build_gateway(settings: Settings, broadcaster: Broadcaster | None = None) -> PersistenceGateway:
    return PersistenceGateway(
        build_backend(settings),
        OrderCache(ttl=settings.cache_ttl),
        broadcaster,
        active_limit=settings.active_limit,
        full_limit=settings.full_limit,
        completed_limit=settings.completed_limit,
    )
