from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.domain.models import AppSettings


async def get_app_settings(session: AsyncSession) -> AppSettings | None:
    result = await session.execute(select(AppSettings).order_by(AppSettings.id).limit(1))
    return result.scalar_one_or_none()


async def create_app_settings(session: AsyncSession, *, contact_number: str) -> AppSettings:
    row = AppSettings(contact_number=contact_number)
    session.add(row)
    await session.flush()
    return row
