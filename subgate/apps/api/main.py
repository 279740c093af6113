from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from subgate.apps.api.errors import (
    database_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    subgate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from subgate.apps.api.routes.audit import router as audit_router
from subgate.apps.api.routes.auth import router as auth_router
from subgate.apps.api.routes.health import router as health_router
from subgate.apps.api.routes.packages import router as packages_router
from subgate.apps.api.routes.realtime import router as realtime_router
from subgate.apps.api.routes.settings import router as settings_router
from subgate.apps.api.routes.subscriptions import router as subscriptions_router
from subgate.apps.api.routes.users import router as users_router
from subgate.core.config import get_settings
from subgate.core.errors import SubgateError
from subgate.core.logging import configure_logging
from subgate.persistence.db import SessionLocal, engine, init_models
from subgate.persistence.repos.users import admin_exists
from subgate.services.auth.tokens import TokenService
from subgate.services.realtime.broadcaster import RevocationBroadcaster
from subgate.services.realtime.registry import ConnectionRegistry
from subgate.services.subscriptions import SubscriptionLocks
from subgate.services.users import ensure_admin


logger = logging.getLogger(__name__)

API_PREFIX = "/api"


async def bootstrap_admin() -> bool:
    # Seed the configured admin only while no admin identity exists.
    settings = get_settings()
    if not settings.bootstrap_admin_email or not settings.bootstrap_admin_password:
        return False
    async with SessionLocal() as session:
        if await admin_exists(session):
            return False
        _user, created = await ensure_admin(
            session,
            email=settings.bootstrap_admin_email,
            password=settings.bootstrap_admin_password,
            name=settings.bootstrap_admin_name,
        )
    return created


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.auto_create_schema:
        await init_models()
    await bootstrap_admin()
    logger.info("app_started environment=%s", settings.environment)
    try:
        yield
    finally:
        await app.state.registry.clear()
        await engine.dispose()
        logger.info("app_stopped")


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    # Fails fast with ConfigurationError when the signing secret is missing.
    token_service = TokenService.from_settings(settings)

    app = FastAPI(title="Subgate API", lifespan=lifespan)
    # Process-owned collaborators, shared by HTTP routes and the realtime channel.
    registry = ConnectionRegistry()
    app.state.token_service = token_service
    app.state.registry = registry
    app.state.broadcaster = RevocationBroadcaster(registry)
    app.state.subscription_locks = SubscriptionLocks()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        response.headers.setdefault("X-Request-Id", request_id)
        logger.debug(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        return response

    @app.exception_handler(SubgateError)
    async def _subgate_exception_handler(request: Request, exc: SubgateError):
        return await subgate_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(SQLAlchemyError)
    async def _database_exception_handler(request: Request, exc: SQLAlchemyError):
        return await database_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)
    app.include_router(packages_router, prefix=API_PREFIX)
    app.include_router(subscriptions_router, prefix=API_PREFIX)
    app.include_router(settings_router, prefix=API_PREFIX)
    app.include_router(audit_router, prefix=API_PREFIX)
    app.include_router(realtime_router)
    return app


app = create_app()
