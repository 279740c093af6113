from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import delete, update

from subgate.core.errors import (
    AccountSuspended,
    InvalidCredentials,
    NoSubscription,
    NotAuthenticated,
    SubscriptionExpired,
)
from subgate.domain.models import ROLE_ADMIN, User, utc_now
from subgate.persistence.db import SessionLocal
from subgate.services.auth import pipeline
from subgate.services.auth.pipeline import (
    REASON_ACTIVE_SUBSCRIPTION,
    REASON_ADMIN_EXEMPT,
    authenticate_token,
    evaluate_access,
)
from subgate.services.auth.tokens import TokenService
from subgate.tests.utils.auth import (
    DEFAULT_PASSWORD,
    create_subscribed_user,
    create_test_admin,
    create_test_package,
    create_test_subscription,
    create_test_user,
)


def _tokens() -> TokenService:
    return TokenService("pipeline-secret", ttl=timedelta(hours=12))


@pytest.mark.asyncio
async def test_active_subscription_is_allowed() -> None:
    user, _package, subscription = await create_subscribed_user(
        end_date=utc_now() + timedelta(days=3)
    )
    async with SessionLocal() as session:
        context = await evaluate_access(session, user)
    assert context.verdict.allowed is True
    assert context.verdict.reason == REASON_ACTIVE_SUBSCRIPTION
    assert context.subscription is not None and context.subscription.id == subscription.id


@pytest.mark.asyncio
async def test_suspension_takes_precedence_over_valid_subscription() -> None:
    user = await create_test_user(suspended=True)
    package = await create_test_package(duration_days=0)
    await create_test_subscription(user_id=user.id, package_id=package.id)
    async with SessionLocal() as session:
        with pytest.raises(AccountSuspended):
            await evaluate_access(session, user)


@pytest.mark.asyncio
async def test_suspended_admin_is_denied() -> None:
    admin = await create_test_user(role=ROLE_ADMIN, suspended=True)
    async with SessionLocal() as session:
        with pytest.raises(AccountSuspended):
            await evaluate_access(session, admin)


@pytest.mark.asyncio
async def test_admin_skips_subscription_lookup(monkeypatch) -> None:
    admin = await create_test_admin()

    async def _fail(*_args, **_kwargs):
        raise AssertionError("admins must not reach the subscription lookup")

    monkeypatch.setattr(pipeline.subscriptions_repo, "get_current_subscription", _fail)
    async with SessionLocal() as session:
        context = await evaluate_access(session, admin)
    assert context.verdict.reason == REASON_ADMIN_EXEMPT
    assert context.subscription is None
    assert context.is_admin


@pytest.mark.asyncio
async def test_missing_or_inactive_subscription_is_denied() -> None:
    user = await create_test_user()
    async with SessionLocal() as session:
        with pytest.raises(NoSubscription):
            await evaluate_access(session, user)

    package = await create_test_package()
    await create_test_subscription(user_id=user.id, package_id=package.id, is_active=False)
    async with SessionLocal() as session:
        with pytest.raises(NoSubscription):
            await evaluate_access(session, user)


@pytest.mark.asyncio
async def test_expired_active_subscription_is_denied() -> None:
    user, _package, _subscription = await create_subscribed_user(
        end_date=utc_now() - timedelta(days=1)
    )
    async with SessionLocal() as session:
        with pytest.raises(SubscriptionExpired):
            await evaluate_access(session, user)


@pytest.mark.asyncio
async def test_expiry_boundary_flips_without_any_write() -> None:
    end = utc_now() + timedelta(hours=2)
    user, _package, _subscription = await create_subscribed_user(end_date=end)
    async with SessionLocal() as session:
        context = await evaluate_access(session, user, now=end - timedelta(seconds=1))
        assert context.verdict.allowed
        with pytest.raises(SubscriptionExpired):
            await evaluate_access(session, user, now=end + timedelta(seconds=1))


@pytest.mark.asyncio
async def test_login_issues_token_for_identity() -> None:
    user, _package, _subscription = await create_subscribed_user(email="Reader@Example.com")
    tokens = _tokens()
    async with SessionLocal() as session:
        # Email matching ignores case.
        context, token = await pipeline.login(
            session, tokens, email="reader@example.com", password=DEFAULT_PASSWORD
        )
    assert context.user.id == user.id
    assert tokens.verify(token) == user.id


@pytest.mark.asyncio
async def test_login_uses_one_error_for_unknown_email_and_wrong_password() -> None:
    user, _package, _subscription = await create_subscribed_user()
    tokens = _tokens()
    async with SessionLocal() as session:
        with pytest.raises(InvalidCredentials) as wrong_password:
            await pipeline.login(session, tokens, email=user.email, password="nope")
        with pytest.raises(InvalidCredentials) as unknown_email:
            await pipeline.login(session, tokens, email="ghost@example.com", password="nope")
    assert wrong_password.value.message == unknown_email.value.message
    assert wrong_password.value.status_code == 401


@pytest.mark.asyncio
async def test_login_applies_shared_checks_after_credentials() -> None:
    user = await create_test_user()
    async with SessionLocal() as session:
        with pytest.raises(NoSubscription):
            await pipeline.login(session, _tokens(), email=user.email, password=DEFAULT_PASSWORD)


@pytest.mark.asyncio
async def test_valid_token_for_suspended_identity_is_denied() -> None:
    user, _package, _subscription = await create_subscribed_user()
    tokens = _tokens()
    token = tokens.issue(user.id)
    async with SessionLocal() as session:
        context = await authenticate_token(session, tokens, token)
        assert context.user.id == user.id

    async with SessionLocal() as session:
        await session.execute(update(User).where(User.id == user.id).values(is_suspended=True))
        await session.commit()

    # Same unexpired token; the decision comes from stored state.
    async with SessionLocal() as session:
        with pytest.raises(AccountSuspended):
            await authenticate_token(session, tokens, token)


@pytest.mark.asyncio
async def test_token_for_deleted_identity_is_not_authenticated() -> None:
    user, _package, _subscription = await create_subscribed_user()
    tokens = _tokens()
    token = tokens.issue(user.id)
    async with SessionLocal() as session:
        await session.execute(delete(User).where(User.id == user.id))
        await session.commit()
    async with SessionLocal() as session:
        with pytest.raises(NotAuthenticated):
            await authenticate_token(session, tokens, token)


@pytest.mark.asyncio
async def test_missing_or_forged_token_is_not_authenticated() -> None:
    async with SessionLocal() as session:
        with pytest.raises(NotAuthenticated):
            await authenticate_token(session, _tokens(), None)
        forged = TokenService("other", ttl=timedelta(hours=1)).issue("someone")
        with pytest.raises(NotAuthenticated):
            await authenticate_token(session, _tokens(), forged)
