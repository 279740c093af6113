from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.domain.models import Package, Subscription, User


async def get_subscription(session: AsyncSession, subscription_id: str) -> Subscription | None:
    result = await session.execute(select(Subscription).where(Subscription.id == subscription_id))
    return result.scalar_one_or_none()


async def get_current_subscription(session: AsyncSession, user_id: str) -> Subscription | None:
    # Most recent active record; lifetime (NULL end) ranks above any dated end.
    result = await session.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.is_active.is_(True))
        .order_by(
            Subscription.end_date.is_(None).desc(),
            Subscription.end_date.desc(),
            Subscription.start_date.desc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def deactivate_active(
    session: AsyncSession, user_id: str, *, exclude_id: str | None = None
) -> int:
    stmt = (
        update(Subscription)
        .where(Subscription.user_id == user_id, Subscription.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    if exclude_id is not None:
        stmt = stmt.where(Subscription.id != exclude_id)
    result = await session.execute(stmt)
    return int(result.rowcount or 0)


async def list_subscriptions_detailed(
    session: AsyncSession,
) -> list[tuple[Subscription, User | None, Package | None]]:
    # Outer joins keep rows visible even if a referenced record has gone missing.
    result = await session.execute(
        select(Subscription, User, Package)
        .outerjoin(User, Subscription.user_id == User.id)
        .outerjoin(Package, Subscription.package_id == Package.id)
        .order_by(Subscription.created_at.desc(), Subscription.id)
    )
    return [tuple(row) for row in result.all()]


async def get_subscription_detailed(
    session: AsyncSession, subscription_id: str
) -> tuple[Subscription, User | None, Package | None] | None:
    result = await session.execute(
        select(Subscription, User, Package)
        .outerjoin(User, Subscription.user_id == User.id)
        .outerjoin(Package, Subscription.package_id == Package.id)
        .where(Subscription.id == subscription_id)
    )
    row = result.first()
    if row is None:
        return None
    return tuple(row)
