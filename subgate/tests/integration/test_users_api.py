from __future__ import annotations

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from subgate.domain.models import Subscription, User
from subgate.persistence.db import SessionLocal
from subgate.tests.utils.auth import (
    create_subscribed_user,
    create_test_admin,
    create_test_package,
    create_test_subscription,
    create_test_user,
    login,
)


class _RecordingConnection:
    def __init__(self) -> None:
        self.sent: list[Any] = []

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)


async def _login_admin(client: AsyncClient) -> None:
    admin = await create_test_admin()
    response = await login(client, admin.email)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_non_admin_cannot_manage_users(client) -> None:
    user, _package, _subscription = await create_subscribed_user()
    assert (await login(client, user.email)).status_code == 200

    response = await client.get("/api/users")
    assert response.status_code == 403
    assert response.json()["code"] == "NOT_AUTHORIZED"


@pytest.mark.asyncio
async def test_admin_routes_require_authentication(client) -> None:
    response = await client.post(
        "/api/users", json={"email": "x@example.com", "password": "p", "name": "X"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_list_returns_only_user_role_newest_first(app, client) -> None:
    await _login_admin(client)
    older = await create_test_user(email="older@example.com")
    newer = await create_test_user(email="newer@example.com")

    response = await client.get("/api/users")
    assert response.status_code == 200
    body = response.json()
    assert [row["id"] for row in body] == [newer.id, older.id]
    assert all(row["role"] == "user" for row in body)
    assert all("password_hash" not in row and "password" not in row for row in body)


@pytest.mark.asyncio
async def test_create_user_validates_and_rejects_duplicates(app, client) -> None:
    await _login_admin(client)

    missing = await client.post("/api/users", json={"email": "new@example.com", "password": "pw"})
    assert missing.status_code == 400

    created = await client.post(
        "/api/users", json={"email": "New@Example.com", "password": "pw-123", "name": "New"}
    )
    assert created.status_code == 201
    body = created.json()
    assert body["email"] == "new@example.com"
    assert body["role"] == "user"
    assert body["is_suspended"] is False
    assert body["total_conversions"] == 0

    duplicate = await client.post(
        "/api/users", json={"email": "new@example.com", "password": "pw-123", "name": "Again"}
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "EMAIL_EXISTS"
    assert duplicate.json()["message"] == "Email already exists"


@pytest.mark.asyncio
async def test_update_user_rechecks_email_and_rehashes_password(app, client) -> None:
    await _login_admin(client)
    taken = await create_test_user(email="taken@example.com")
    user, _package, _subscription = await create_subscribed_user(email="before@example.com")

    conflict = await client.put(f"/api/users/{user.id}", json={"email": taken.email})
    assert conflict.status_code == 400
    assert conflict.json()["code"] == "EMAIL_EXISTS"

    response = await client.put(
        f"/api/users/{user.id}",
        json={"email": "after@example.com", "name": "Renamed", "password": "new-pass"},
    )
    assert response.status_code == 200
    assert response.json()["email"] == "after@example.com"
    assert response.json()["name"] == "Renamed"

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as user_http:
        assert (await login(user_http, "after@example.com", "new-pass")).status_code == 200


@pytest.mark.asyncio
async def test_unknown_user_is_not_found(app, client) -> None:
    await _login_admin(client)
    response = await client.put("/api/users/missing/suspend")
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_admin_identities_cannot_be_suspended_or_deleted(app, client) -> None:
    await _login_admin(client)
    other_admin = await create_test_admin()

    suspend = await client.put(f"/api/users/{other_admin.id}/suspend")
    delete = await client.delete(f"/api/users/{other_admin.id}")
    assert suspend.status_code == 403
    assert delete.status_code == 403
    assert suspend.json()["code"] == "NOT_AUTHORIZED"


@pytest.mark.asyncio
async def test_admin_identities_cannot_be_edited(client) -> None:
    await _login_admin(client)
    other_admin = await create_test_admin()

    response = await client.put(
        f"/api/users/{other_admin.id}",
        json={"email": "hijacked@example.com", "password": "x"},
    )
    assert response.status_code == 403
    assert response.json()["code"] == "NOT_AUTHORIZED"

    async with SessionLocal() as session:
        stored = await session.get(User, other_admin.id)
    assert stored is not None and stored.email == other_admin.email


@pytest.mark.asyncio
async def test_suspend_toggle_revokes_only_when_suspending(app, client) -> None:
    await _login_admin(client)
    user, _package, _subscription = await create_subscribed_user()
    tab = _RecordingConnection()
    await app.state.registry.register(user.id, tab)

    suspended = await client.put(f"/api/users/{user.id}/suspend")
    assert suspended.status_code == 200
    assert suspended.json()["is_suspended"] is True
    assert tab.sent == [{"type": "force-logout", "data": {"reason": "Account suspended"}}]

    reinstated = await client.put(f"/api/users/{user.id}/suspend")
    assert reinstated.json()["is_suspended"] is False
    assert len(tab.sent) == 1


@pytest.mark.asyncio
async def test_suspension_denies_existing_session_on_next_request(app, client) -> None:
    user, _package, _subscription = await create_subscribed_user()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as user_http:
        assert (await login(user_http, user.email)).status_code == 200
        assert (await user_http.get("/api/auth/me")).status_code == 200

        await _login_admin(client)
        assert (await client.put(f"/api/users/{user.id}/suspend")).status_code == 200

        response = await user_http.get("/api/auth/me")
        assert response.status_code == 403
        assert response.json()["code"] == "ACCOUNT_SUSPENDED"


@pytest.mark.asyncio
async def test_delete_revokes_and_allows_recreating_email(app, client) -> None:
    await _login_admin(client)
    user, _package, _subscription = await create_subscribed_user(email="gone@example.com")
    tab = _RecordingConnection()
    await app.state.registry.register(user.id, tab)

    response = await client.delete(f"/api/users/{user.id}")
    assert response.status_code == 200
    assert tab.sent == [{"type": "force-logout", "data": {"reason": "Account deleted"}}]

    async with SessionLocal() as session:
        assert await session.get(User, user.id) is None
        leftovers = (
            await session.execute(select(Subscription).where(Subscription.user_id == user.id))
        ).scalars().all()
        assert leftovers == []

    recreated = await client.post(
        "/api/users", json={"email": "gone@example.com", "password": "pw", "name": "Back"}
    )
    assert recreated.status_code == 201
    assert recreated.json()["id"] != user.id


@pytest.mark.asyncio
async def test_delete_without_live_connections_still_succeeds(app, client) -> None:
    await _login_admin(client)
    user = await create_test_user()
    response = await client.delete(f"/api/users/{user.id}")
    assert response.status_code == 200
    assert app.state.registry.connection_count() == 0


@pytest.mark.asyncio
async def test_increment_conversions_counts_per_identity(client) -> None:
    user, _package, _subscription = await create_subscribed_user()
    assert (await login(client, user.email)).status_code == 200

    first = await client.post("/api/users/increment-conversions")
    second = await client.post("/api/users/increment-conversions")
    assert first.json() == {"total_conversions": 1}
    assert second.json() == {"total_conversions": 2}


@pytest.mark.asyncio
async def test_increment_conversions_runs_the_full_pipeline(app, client) -> None:
    user = await create_test_user()
    package = await create_test_package()
    await create_test_subscription(user_id=user.id, package_id=package.id, is_active=False)
    client.cookies.set("token", app.state.token_service.issue(user.id))

    response = await client.post("/api/users/increment-conversions")
    assert response.status_code == 403
    assert response.json()["code"] == "NO_SUBSCRIPTION"


@pytest.mark.asyncio
async def test_user_can_read_self_but_not_others(client) -> None:
    user, _package, _subscription = await create_subscribed_user()
    other = await create_test_user()
    assert (await login(client, user.email)).status_code == 200

    own = await client.get(f"/api/users/{user.id}")
    assert own.status_code == 200
    assert own.json()["email"] == user.email
    assert (await client.get(f"/api/users/{other.id}")).status_code == 403
