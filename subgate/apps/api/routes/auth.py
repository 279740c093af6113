from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.apps.api.deps import get_access_context, get_db, get_token_service
from subgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from subgate.apps.api.response import MessageResponse
from subgate.core.config import get_settings
from subgate.core.errors import AccessDenied
from subgate.domain.models import User
from subgate.services.audit import record_request_event
from subgate.services.auth import pipeline
from subgate.services.auth.pipeline import AccessContext
from subgate.services.auth.tokens import TokenService


router = APIRouter(prefix="/auth", tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1)


class SessionUser(BaseModel):
    id: str
    email: str
    name: str
    role: str


class SessionResponse(BaseModel):
    user: SessionUser


def _session_payload(user: User) -> SessionResponse:
    return SessionResponse(
        user=SessionUser(id=user.id, email=user.email, name=user.name, role=user.role)
    )


def set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    # Cookie and token share one lifetime; Secure only outside local development.
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite=settings.session_cookie_samesite,
        secure=settings.is_production,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        samesite=settings.session_cookie_samesite,
        secure=settings.is_production,
        path="/",
    )


@router.post("/login", response_model=SessionResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> SessionResponse:
    try:
        context, token = await pipeline.login(
            db, tokens, email=payload.email, password=payload.password
        )
    except AccessDenied as exc:
        await record_request_event(
            request,
            session=db,
            actor_id=None,
            actor_role=None,
            event_type="auth.login",
            outcome="failure",
            resource_type="session",
            metadata={"email": payload.email.strip().lower()},
            error_code=exc.code,
        )
        raise
    set_session_cookie(response, token)
    await record_request_event(
        request,
        session=db,
        actor_id=context.user.id,
        actor_role=context.user.role,
        event_type="auth.login",
        resource_type="session",
        resource_id=context.user.id,
        metadata={"verdict": context.verdict.reason},
    )
    return _session_payload(context.user)


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response) -> MessageResponse:
    # No session state lives server-side; dropping the cookie is the whole logout.
    clear_session_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=SessionResponse)
async def me(context: AccessContext = Depends(get_access_context)) -> SessionResponse:
    return _session_payload(context.user)
