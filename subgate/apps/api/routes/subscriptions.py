from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.apps.api.deps import get_access_context, get_db, get_subscription_locks, require_admin
from subgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES, NOT_FOUND_RESPONSE
from subgate.apps.api.response import MessageResponse
from subgate.domain.models import Package, Subscription, User, utc_now
from subgate.services import subscriptions as subscriptions_service
from subgate.services.audit import record_request_event
from subgate.services.auth.pipeline import AccessContext
from subgate.services.subscriptions import SubscriptionLocks, is_expired, subscription_state


router = APIRouter(
    prefix="/subscriptions",
    tags=["subscriptions"],
    responses={**DEFAULT_ERROR_RESPONSES, **NOT_FOUND_RESPONSE},
)


class SubscriptionUser(BaseModel):
    id: str
    name: str
    email: str


class SubscriptionPackage(BaseModel):
    id: str
    name: str
    price: float
    duration_days: int


class SubscriptionResponse(BaseModel):
    id: str
    user_id: str
    package_id: str
    user: SubscriptionUser | None
    package: SubscriptionPackage | None
    start_date: datetime
    end_date: datetime | None
    is_active: bool
    # Derived at serialization time from end_date and the clock.
    is_expired: bool
    state: str
    created_at: datetime
    updated_at: datetime


class CurrentSubscriptionResponse(BaseModel):
    state: str
    subscription: SubscriptionResponse | None


class SubscriptionCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    package_id: str = Field(min_length=1)
    start_date: datetime | None = None
    # Omitted end dates are computed from the package duration.
    end_date: datetime | None = None


class SubscriptionUpdateRequest(BaseModel):
    package_id: str | None = None
    start_date: datetime | None = None
    # An explicit null converts the record to lifetime access.
    end_date: datetime | None = None
    is_active: bool | None = None


def _to_payload(
    subscription: Subscription,
    user: User | None,
    package: Package | None,
    *,
    now: datetime,
) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        user_id=subscription.user_id,
        package_id=subscription.package_id,
        user=SubscriptionUser(id=user.id, name=user.name, email=user.email) if user else None,
        package=(
            SubscriptionPackage(
                id=package.id,
                name=package.name,
                price=float(package.price),
                duration_days=package.duration_days,
            )
            if package
            else None
        ),
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        is_active=subscription.is_active,
        is_expired=is_expired(subscription.end_date, now=now),
        state=subscription_state(subscription, now=now),
        created_at=subscription.created_at,
        updated_at=subscription.updated_at,
    )


async def _detail_payload(db: AsyncSession, subscription_id: str) -> SubscriptionResponse:
    subscription, user, package = await subscriptions_service.get_subscription_detail(
        db, subscription_id
    )
    return _to_payload(subscription, user, package, now=utc_now())


@router.get("", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    _admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[SubscriptionResponse]:
    now = utc_now()
    rows = await subscriptions_service.list_subscriptions(db)
    return [_to_payload(subscription, user, package, now=now) for subscription, user, package in rows]


@router.get("/current", response_model=CurrentSubscriptionResponse)
async def current_subscription(
    context: AccessContext = Depends(get_access_context),
    db: AsyncSession = Depends(get_db),
) -> CurrentSubscriptionResponse:
    subscription, state = await subscriptions_service.get_current_state(db, context.user.id)
    if subscription is None:
        return CurrentSubscriptionResponse(state=state, subscription=None)
    return CurrentSubscriptionResponse(
        state=state, subscription=await _detail_payload(db, subscription.id)
    )


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: str,
    _admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    return await _detail_payload(db, subscription_id)


@router.post("", response_model=SubscriptionResponse, status_code=201)
async def create_subscription(
    payload: SubscriptionCreateRequest,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    locks: SubscriptionLocks = Depends(get_subscription_locks),
) -> SubscriptionResponse:
    subscription = await subscriptions_service.assign_subscription(
        db,
        locks,
        user_id=payload.user_id,
        package_id=payload.package_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="subscription.assigned",
        resource_type="subscription",
        resource_id=subscription.id,
        metadata={"user_id": payload.user_id, "package_id": payload.package_id},
    )
    return await _detail_payload(db, subscription.id)


@router.put("/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: str,
    payload: SubscriptionUpdateRequest,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    locks: SubscriptionLocks = Depends(get_subscription_locks),
) -> SubscriptionResponse:
    # Only fields the client actually sent are applied.
    changes: dict[str, Any] = {
        field: getattr(payload, field) for field in payload.model_fields_set
    }
    subscription = await subscriptions_service.update_subscription(
        db, locks, subscription_id, **changes
    )
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="subscription.updated",
        resource_type="subscription",
        resource_id=subscription.id,
        metadata={"fields": sorted(changes)},
    )
    return await _detail_payload(db, subscription.id)


@router.delete("/{subscription_id}", response_model=MessageResponse)
async def delete_subscription(
    subscription_id: str,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    subscription = await subscriptions_service.delete_subscription(db, subscription_id)
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="subscription.deleted",
        resource_type="subscription",
        resource_id=subscription_id,
        metadata={"user_id": subscription.user_id},
    )
    return MessageResponse(message="Subscription deleted successfully")
