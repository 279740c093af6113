from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from subgate.core.config import get_settings
from subgate.core.errors import NotAuthorized
from subgate.persistence.db import get_session
from subgate.services.audit import record_request_event
from subgate.services.auth.pipeline import AccessContext, authenticate_token
from subgate.services.auth.tokens import TokenService
from subgate.services.realtime.broadcaster import RevocationBroadcaster
from subgate.services.realtime.registry import ConnectionRegistry
from subgate.services.subscriptions import SubscriptionLocks


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


# App-owned collaborators live on app.state; HTTPConnection covers HTTP and WebSocket scopes.
def get_token_service(conn: HTTPConnection) -> TokenService:
    return conn.app.state.token_service


def get_registry(conn: HTTPConnection) -> ConnectionRegistry:
    return conn.app.state.registry


def get_broadcaster(conn: HTTPConnection) -> RevocationBroadcaster:
    return conn.app.state.broadcaster


def get_subscription_locks(conn: HTTPConnection) -> SubscriptionLocks:
    return conn.app.state.subscription_locks


def read_session_token(conn: HTTPConnection) -> str | None:
    return conn.cookies.get(get_settings().session_cookie_name)


async def get_access_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> AccessContext:
    # Full pipeline on every protected request; nothing is cached between requests.
    return await authenticate_token(db, tokens, read_session_token(request))


async def require_admin(
    request: Request,
    context: AccessContext = Depends(get_access_context),
    db: AsyncSession = Depends(get_db),
) -> AccessContext:
    if not context.is_admin:
        await record_request_event(
            request,
            session=db,
            actor_id=context.user.id,
            actor_role=context.user.role,
            event_type="rbac.forbidden",
            outcome="failure",
            resource_type="route",
            resource_id=request.url.path,
            metadata={"method": request.method},
            error_code=NotAuthorized.code,
        )
        raise NotAuthorized()
    return context
