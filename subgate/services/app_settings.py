from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.core.config import get_settings
from subgate.core.errors import ServerFault
from subgate.domain.models import AppSettings
from subgate.persistence.repos import app_settings as app_settings_repo


logger = logging.getLogger(__name__)


async def get_or_create(session: AsyncSession) -> AppSettings:
    # The single global record is created lazily on first read.
    row = await app_settings_repo.get_app_settings(session)
    if row is not None:
        return row
    try:
        row = await app_settings_repo.create_app_settings(
            session, contact_number=get_settings().default_contact_number
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to initialise settings") from exc
    logger.info("app_settings_created id=%s", row.id)
    return row


async def update_settings(session: AsyncSession, *, contact_number: str | None = None) -> AppSettings:
    row = await get_or_create(session)
    if contact_number:
        row.contact_number = contact_number.strip()
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to update settings") from exc
    return row
