from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
import logging
from typing import Any, AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.core.errors import NotFound, ServerFault
from subgate.domain.models import Package, Subscription, User, ensure_utc, utc_now
from subgate.persistence.repos import packages as packages_repo
from subgate.persistence.repos import subscriptions as subscriptions_repo
from subgate.persistence.repos import users as users_repo


logger = logging.getLogger(__name__)

STATE_NO_SUBSCRIPTION = "no_subscription"
STATE_ACTIVE_VALID = "active_valid"
STATE_ACTIVE_EXPIRED = "active_expired"
STATE_INACTIVE_HISTORICAL = "inactive_historical"

# Marks an update field the caller did not send, as distinct from an explicit null.
UNSET: Any = object()


def is_expired(end_date: datetime | None, *, now: datetime | None = None) -> bool:
    # Derived on every read; never written back to storage.
    if end_date is None:
        return False
    return ensure_utc(end_date) < ensure_utc(now or utc_now())


def compute_end_date(start_date: datetime, duration_days: int) -> datetime | None:
    # A zero-day package grants lifetime access.
    if duration_days <= 0:
        return None
    return start_date + timedelta(days=duration_days)


def subscription_state(subscription: Subscription | None, *, now: datetime | None = None) -> str:
    if subscription is None:
        return STATE_NO_SUBSCRIPTION
    if not subscription.is_active:
        return STATE_INACTIVE_HISTORICAL
    if is_expired(subscription.end_date, now=now):
        return STATE_ACTIVE_EXPIRED
    return STATE_ACTIVE_VALID


class SubscriptionLocks:
    """Per-identity mutual exclusion for writes that touch the active flag.

    Deactivating prior records and activating a new one spans two statements;
    holding the identity's lock across both keeps a concurrent assignment from
    observing (or producing) two active rows.
    """

    def __init__(self) -> None:
        # identity -> (lock, holders plus waiters); entries go away when unused.
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def for_identity(self, identity_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(identity_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[identity_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            _, users = self._locks[identity_id]
            if users <= 1:
                del self._locks[identity_id]
            else:
                self._locks[identity_id] = (lock, users - 1)


async def get_current_state(
    session: AsyncSession, identity_id: str, *, now: datetime | None = None
) -> tuple[Subscription | None, str]:
    subscription = await subscriptions_repo.get_current_subscription(session, identity_id)
    if subscription is None:
        return None, STATE_NO_SUBSCRIPTION
    return subscription, subscription_state(subscription, now=now)


async def assign_subscription(
    session: AsyncSession,
    locks: SubscriptionLocks,
    *,
    user_id: str,
    package_id: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> Subscription:
    user = await users_repo.get_user(session, user_id)
    if user is None:
        raise NotFound("User not found")
    package = await packages_repo.get_package(session, package_id)
    if package is None:
        raise NotFound("Package not found")

    start = ensure_utc(start_date) or utc_now()
    resolved_end = (
        ensure_utc(end_date) if end_date is not None else compute_end_date(start, package.duration_days)
    )

    async with locks.for_identity(user_id):
        try:
            superseded = await subscriptions_repo.deactivate_active(session, user_id)
            subscription = Subscription(
                user_id=user_id,
                package_id=package_id,
                start_date=start,
                end_date=resolved_end,
                is_active=True,
            )
            session.add(subscription)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise ServerFault("Failed to assign subscription") from exc

    logger.info(
        "subscription_assigned subscription_id=%s user_id=%s package_id=%s superseded=%s",
        subscription.id,
        user_id,
        package_id,
        superseded,
    )
    return subscription


async def update_subscription(
    session: AsyncSession,
    locks: SubscriptionLocks,
    subscription_id: str,
    *,
    package_id: str | None = UNSET,
    start_date: datetime | None = UNSET,
    end_date: datetime | None = UNSET,
    is_active: bool | None = UNSET,
) -> Subscription:
    subscription = await subscriptions_repo.get_subscription(session, subscription_id)
    if subscription is None:
        raise NotFound("Subscription not found")

    if package_id is not UNSET and package_id is not None:
        package = await packages_repo.get_package(session, package_id)
        if package is None:
            raise NotFound("Package not found")

    async with locks.for_identity(subscription.user_id):
        try:
            if package_id is not UNSET and package_id is not None:
                subscription.package_id = package_id
            if start_date is not UNSET and start_date is not None:
                subscription.start_date = ensure_utc(start_date)
            if end_date is not UNSET:
                # Explicit null converts the record to lifetime access.
                subscription.end_date = ensure_utc(end_date)
            if is_active is not UNSET and is_active is not None:
                if is_active and not subscription.is_active:
                    # Reactivation supersedes whatever is currently active.
                    await subscriptions_repo.deactivate_active(
                        session, subscription.user_id, exclude_id=subscription.id
                    )
                subscription.is_active = is_active
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise ServerFault("Failed to update subscription") from exc

    logger.info(
        "subscription_updated subscription_id=%s user_id=%s is_active=%s",
        subscription.id,
        subscription.user_id,
        subscription.is_active,
    )
    return subscription


async def delete_subscription(session: AsyncSession, subscription_id: str) -> Subscription:
    subscription = await subscriptions_repo.get_subscription(session, subscription_id)
    if subscription is None:
        raise NotFound("Subscription not found")
    try:
        await session.delete(subscription)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to delete subscription") from exc
    logger.info(
        "subscription_deleted subscription_id=%s user_id=%s",
        subscription_id,
        subscription.user_id,
    )
    return subscription


async def list_subscriptions(
    session: AsyncSession,
) -> list[tuple[Subscription, User | None, Package | None]]:
    return await subscriptions_repo.list_subscriptions_detailed(session)


async def get_subscription_detail(
    session: AsyncSession, subscription_id: str
) -> tuple[Subscription, User | None, Package | None]:
    row = await subscriptions_repo.get_subscription_detailed(session, subscription_id)
    if row is None:
        raise NotFound("Subscription not found")
    return row
