from __future__ import annotations

from sqlalchemy import delete, not_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.domain.models import ROLE_ADMIN, ROLE_USER, Subscription, User, utc_now


def normalize_email(email: str) -> str:
    # Emails compare case-insensitively; store and query the lower-cased form.
    return email.strip().lower()


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def list_users(session: AsyncSession, *, role: str = ROLE_USER) -> list[User]:
    result = await session.execute(
        select(User).where(User.role == role).order_by(User.created_at.desc(), User.id)
    )
    return list(result.scalars().all())


async def admin_exists(session: AsyncSession) -> bool:
    result = await session.execute(select(User.id).where(User.role == ROLE_ADMIN).limit(1))
    return result.first() is not None


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    name: str,
    password_hash: str,
    role: str = ROLE_USER,
) -> User:
    user = User(
        email=normalize_email(email),
        name=name.strip(),
        password_hash=password_hash,
        role=role,
        is_suspended=False,
        total_conversions=0,
    )
    session.add(user)
    await session.flush()
    return user


async def delete_user(session: AsyncSession, user: User) -> None:
    # Remove subscriptions explicitly so deletes behave the same without FK cascades (SQLite).
    await session.execute(delete(Subscription).where(Subscription.user_id == user.id))
    await session.delete(user)
    await session.flush()


async def increment_conversions(session: AsyncSession, user_id: str) -> int | None:
    # Single UPDATE keeps concurrent increments from losing writes.
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(total_conversions=User.total_conversions + 1, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(select(User.total_conversions).where(User.id == user_id))
    return result.scalar_one_or_none()


async def toggle_suspension(session: AsyncSession, user_id: str) -> bool | None:
    # Flip in SQL so concurrent toggles serialize on the row instead of racing a stale read.
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(is_suspended=not_(User.is_suspended), updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(select(User.is_suspended).where(User.id == user_id))
    return result.scalar_one_or_none()
