"""Database engine and session dependency for the order store service."""

from __future__ import annotations

import os
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

DATABASE_URL = os.getenv("ORDER_TRACKER_DATABASE_URL", "sqlite+aiosqlite:///./orders.db")


def _create_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite") and (url.endswith("://") or ":memory:" in url):
        # a single shared connection, otherwise each checkout sees an empty database
        return create_async_engine(url, poolclass=StaticPool)
    return create_async_engine(url, pool_pre_ping=True)


engine = _create_engine(DATABASE_URL)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


def configure(url: str) -> AsyncEngine:
    """Point the service at another database (used by tests and the CLI)."""

    global engine, SessionLocal
    engine = _create_engine(url)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
    return engine


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session
