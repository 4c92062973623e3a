"""FastAPI application entrypoint for the order store."""

from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, select

from ..session import DEFAULT_USERS
from . import deps, models
from .routers import changes, orders, users

logger = logging.getLogger("order-tracker.api")

app = FastAPI(title="Order Tracker API", version="0.1.0")

cors_origins_env = os.getenv("ORDER_TRACKER_CORS_ORIGINS", "http://localhost:3000,http://localhost:8000")
allow_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _seed_users() -> None:
    async with deps.SessionLocal() as session:
        count = await session.scalar(select(func.count()).select_from(models.User))
        if count:
            return
        session.add_all(models.User(id=u.id, name=u.name, role=u.role.value) for u in DEFAULT_USERS)
        await session.commit()
        logger.info("Seeded %d default users", len(DEFAULT_USERS))


@app.on_event("startup")
async def _create_tables() -> None:
    """Ensure the database schema exists before serving requests."""

    async with deps.engine.begin() as connection:
        await connection.run_sync(models.Base.metadata.create_all)
    logger.info("Database schema ensured")
    await _seed_users()


@app.on_event("shutdown")
async def _dispose_engine() -> None:
    await deps.engine.dispose()


@app.exception_handler(HTTPException)
async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # pragma: no cover - integration glue
    detail = exc.detail
    if isinstance(detail, dict):
        payload: dict[str, Any] = {
            **detail,
            "detail": str(detail.get("detail", "Error interno")),
            "code": str(detail.get("code", f"http.{exc.status_code}")),
        }
    elif isinstance(detail, str):
        payload = {"detail": detail, "code": f"http.{exc.status_code}"}
    else:
        payload = {"detail": "Error inesperado", "code": "http.unexpected"}
    if exc.headers:
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content=payload)


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:  # pragma: no cover - integration glue
    payload = {"detail": "Error de validación", "code": "validation_error", "errors": jsonable_encoder(exc.errors())}
    return JSONResponse(status_code=422, content=payload)


app.include_router(orders.router, prefix="/orders", tags=["orders"])
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(changes.router, prefix="/changes", tags=["changes"])


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
