from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.core.errors import DuplicateEmail, NotAuthorized, NotFound, ServerFault
from subgate.domain.models import ROLE_ADMIN, ROLE_USER, User
from subgate.persistence.repos import users as users_repo
from subgate.services.auth.passwords import hash_password
from subgate.services.realtime.broadcaster import (
    REASON_DELETED,
    REASON_SUSPENDED,
    RevocationBroadcaster,
)


logger = logging.getLogger(__name__)


async def list_users(session: AsyncSession) -> list[User]:
    # Admin identities are not managed through the user listing.
    return await users_repo.list_users(session, role=ROLE_USER)


async def get_user(session: AsyncSession, user_id: str) -> User:
    user = await users_repo.get_user(session, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    name: str,
    role: str = ROLE_USER,
) -> User:
    if await users_repo.get_user_by_email(session, email) is not None:
        raise DuplicateEmail()
    password_hash = await hash_password(password)
    try:
        user = await users_repo.create_user(
            session, email=email, name=name, password_hash=password_hash, role=role
        )
        await session.commit()
    except IntegrityError as exc:
        # A concurrent create won the unique index.
        await session.rollback()
        raise DuplicateEmail() from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to create user") from exc
    logger.info("user_created user_id=%s role=%s", user.id, user.role)
    return user


async def update_user(
    session: AsyncSession,
    user_id: str,
    *,
    email: str | None = None,
    name: str | None = None,
    password: str | None = None,
) -> User:
    user = await get_user(session, user_id)
    if user.role == ROLE_ADMIN:
        raise NotAuthorized("Cannot modify admin users")
    if email and users_repo.normalize_email(email) != user.email:
        if await users_repo.get_user_by_email(session, email) is not None:
            raise DuplicateEmail()
        user.email = users_repo.normalize_email(email)
    if name:
        user.name = name.strip()
    if password:
        user.password_hash = await hash_password(password)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateEmail() from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to update user") from exc
    logger.info("user_updated user_id=%s password_changed=%s", user.id, bool(password))
    return user


async def delete_user(
    session: AsyncSession, broadcaster: RevocationBroadcaster, user_id: str
) -> User:
    user = await get_user(session, user_id)
    if user.role == ROLE_ADMIN:
        raise NotAuthorized("Cannot delete admin users")
    try:
        await users_repo.delete_user(session, user)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to delete user") from exc
    logger.info("user_deleted user_id=%s", user_id)
    # Persist first, then revoke; registry state may be stale, so never skip the call.
    await broadcaster.revoke(user_id, REASON_DELETED)
    return user


async def toggle_suspend(
    session: AsyncSession, broadcaster: RevocationBroadcaster, user_id: str
) -> User:
    user = await get_user(session, user_id)
    if user.role == ROLE_ADMIN:
        raise NotAuthorized("Cannot suspend admin users")
    try:
        await users_repo.toggle_suspension(session, user.id)
        await session.commit()
        await session.refresh(user)
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to update suspension") from exc
    logger.info("user_suspension_toggled user_id=%s is_suspended=%s", user.id, user.is_suspended)
    if user.is_suspended:
        await broadcaster.revoke(user.id, REASON_SUSPENDED)
    return user


async def increment_conversions(session: AsyncSession, user_id: str) -> int:
    try:
        total = await users_repo.increment_conversions(session, user_id)
        if total is None:
            await session.rollback()
            raise NotFound("User not found")
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to record conversion") from exc
    return total


async def ensure_admin(
    session: AsyncSession, *, email: str, password: str, name: str
) -> tuple[User, bool]:
    # Idempotent: an existing identity with this email is returned untouched.
    existing = await users_repo.get_user_by_email(session, email)
    if existing is not None:
        return existing, False
    user = await create_user(session, email=email, password=password, name=name, role=ROLE_ADMIN)
    logger.info("admin_bootstrapped user_id=%s", user.id)
    return user, True
