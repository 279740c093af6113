from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.domain.models import Package, Subscription


async def get_package(session: AsyncSession, package_id: str) -> Package | None:
    result = await session.execute(select(Package).where(Package.id == package_id))
    return result.scalar_one_or_none()


async def list_active_packages(session: AsyncSession) -> list[Package]:
    # Public catalog: visible packages, cheapest first.
    result = await session.execute(
        select(Package).where(Package.is_active.is_(True)).order_by(Package.price.asc(), Package.id)
    )
    return list(result.scalars().all())


async def list_all_packages(session: AsyncSession) -> list[Package]:
    result = await session.execute(select(Package).order_by(Package.created_at.desc(), Package.id))
    return list(result.scalars().all())


async def count_package_references(session: AsyncSession, package_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(Subscription).where(Subscription.package_id == package_id)
    )
    return int(result.scalar_one())
