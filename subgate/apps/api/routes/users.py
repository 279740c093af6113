from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.apps.api.deps import get_access_context, get_broadcaster, get_db, require_admin
from subgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES, NOT_FOUND_RESPONSE
from subgate.apps.api.response import MessageResponse
from subgate.core.errors import NotAuthorized
from subgate.domain.models import User
from subgate.services import users as users_service
from subgate.services.audit import record_request_event
from subgate.services.auth.pipeline import AccessContext
from subgate.services.realtime.broadcaster import RevocationBroadcaster


router = APIRouter(
    prefix="/users",
    tags=["users"],
    responses={**DEFAULT_ERROR_RESPONSES, **NOT_FOUND_RESPONSE},
)


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: str
    is_suspended: bool
    total_conversions: int
    created_at: datetime


class UserCreateRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)


class UserUpdateRequest(BaseModel):
    # Omitted or empty fields are left unchanged.
    email: str | None = Field(default=None, max_length=320)
    name: str | None = Field(default=None, max_length=200)
    password: str | None = None


class ConversionCountResponse(BaseModel):
    total_conversions: int


def _to_payload(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        is_suspended=user.is_suspended,
        total_conversions=user.total_conversions,
        created_at=user.created_at,
    )


@router.get("", response_model=list[UserResponse])
async def list_users(
    _admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[UserResponse]:
    return [_to_payload(user) for user in await users_service.list_users(db)]


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    payload: UserCreateRequest,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await users_service.create_user(
        db, email=payload.email, password=payload.password, name=payload.name
    )
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="user.created",
        resource_type="user",
        resource_id=user.id,
    )
    return _to_payload(user)


@router.post("/increment-conversions", response_model=ConversionCountResponse)
async def increment_conversions(
    context: AccessContext = Depends(get_access_context),
    db: AsyncSession = Depends(get_db),
) -> ConversionCountResponse:
    total = await users_service.increment_conversions(db, context.user.id)
    return ConversionCountResponse(total_conversions=total)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    context: AccessContext = Depends(get_access_context),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    # Identities may read themselves; everyone else needs the admin role.
    if not context.is_admin and context.user.id != user_id:
        raise NotAuthorized()
    return _to_payload(await users_service.get_user(db, user_id))


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    payload: UserUpdateRequest,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await users_service.update_user(
        db, user_id, email=payload.email, name=payload.name, password=payload.password
    )
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="user.updated",
        resource_type="user",
        resource_id=user.id,
        metadata={"fields": sorted(payload.model_dump(exclude_none=True))},
    )
    return _to_payload(user)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: RevocationBroadcaster = Depends(get_broadcaster),
) -> MessageResponse:
    await users_service.delete_user(db, broadcaster, user_id)
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="user.deleted",
        resource_type="user",
        resource_id=user_id,
    )
    return MessageResponse(message="User deleted successfully")


@router.put("/{user_id}/suspend", response_model=UserResponse)
async def toggle_suspend(
    user_id: str,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: RevocationBroadcaster = Depends(get_broadcaster),
) -> UserResponse:
    user = await users_service.toggle_suspend(db, broadcaster, user_id)
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="user.suspended" if user.is_suspended else "user.reinstated",
        resource_type="user",
        resource_id=user.id,
    )
    return _to_payload(user)
