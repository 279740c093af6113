from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from subgate.core.errors import (
    AccessDenied,
    AccountSuspended,
    InvalidCredentials,
    InvalidToken,
    NoSubscription,
    NotAuthenticated,
    SubscriptionExpired,
)
from subgate.domain.models import ROLE_ADMIN, Subscription, User
from subgate.persistence.repos import subscriptions as subscriptions_repo
from subgate.persistence.repos import users as users_repo
from subgate.services.auth.passwords import verify_password
from subgate.services.auth.tokens import TokenService
from subgate.services.subscriptions import is_expired


logger = logging.getLogger(__name__)

REASON_ACTIVE_SUBSCRIPTION = "ACTIVE_SUBSCRIPTION"
REASON_ADMIN_EXEMPT = "ADMIN_EXEMPT"


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    reason: str


@dataclass(frozen=True)
class AccessContext:
    """Resolved identity plus the verdict that admitted it, threaded to handlers."""

    user: User
    verdict: Verdict
    subscription: Subscription | None = None

    @property
    def is_admin(self) -> bool:
        return self.user.role == ROLE_ADMIN


async def evaluate_access(
    session: AsyncSession, user: User, *, now: datetime | None = None
) -> AccessContext:
    # Ordered checks; the first failure is terminal.
    if user.is_suspended:
        raise AccountSuspended()
    if user.role == ROLE_ADMIN:
        # Admins never reach the subscription lookup.
        return AccessContext(user=user, verdict=Verdict(True, REASON_ADMIN_EXEMPT))
    subscription = await subscriptions_repo.get_current_subscription(session, user.id)
    if subscription is None:
        raise NoSubscription()
    if is_expired(subscription.end_date, now=now):
        raise SubscriptionExpired()
    return AccessContext(
        user=user,
        verdict=Verdict(True, REASON_ACTIVE_SUBSCRIPTION),
        subscription=subscription,
    )


async def login(
    session: AsyncSession,
    tokens: TokenService,
    *,
    email: str,
    password: str,
    now: datetime | None = None,
) -> tuple[AccessContext, str]:
    user = await users_repo.get_user_by_email(session, email)
    # Unknown email and wrong password share one error so existence is not disclosed.
    if user is None or not await verify_password(password, user.password_hash):
        logger.info("login_denied reason=%s", InvalidCredentials.code)
        raise InvalidCredentials()
    try:
        context = await evaluate_access(session, user, now=now)
    except AccessDenied as exc:
        logger.info("login_denied user_id=%s reason=%s", user.id, exc.code)
        raise
    token = tokens.issue(user.id)
    logger.info("login_succeeded user_id=%s reason=%s", user.id, context.verdict.reason)
    return context, token


async def authenticate_token(
    session: AsyncSession,
    tokens: TokenService,
    token: str | None,
    *,
    now: datetime | None = None,
) -> AccessContext:
    try:
        identity_id = tokens.verify(token)
    except InvalidToken as exc:
        raise NotAuthenticated(exc.message) from exc
    user = await users_repo.get_user(session, identity_id)
    if user is None:
        # Token outlived its identity.
        raise NotAuthenticated("Not authenticated")
    try:
        return await evaluate_access(session, user, now=now)
    except AccessDenied as exc:
        logger.info("access_denied user_id=%s reason=%s", user.id, exc.code)
        raise
