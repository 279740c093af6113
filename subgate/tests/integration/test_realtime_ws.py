from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from subgate.tests.utils.auth import DEFAULT_PASSWORD, create_subscribed_user, create_test_admin


def _login_token(tc: TestClient, email: str) -> str:
    response = tc.post("/api/auth/login", json={"email": email, "password": DEFAULT_PASSWORD})
    assert response.status_code == 200
    return response.cookies["token"]


def _session_for(tc: TestClient, user_email: str, admin_email: str) -> str:
    # The jar ends up holding the admin session; the user token is sent explicitly.
    token = _login_token(tc, user_email)
    tc.cookies.clear()
    _login_token(tc, admin_email)
    return token


@pytest.mark.asyncio
async def test_suspension_logs_out_every_open_tab(app) -> None:
    user, _package, _subscription = await create_subscribed_user()
    admin = await create_test_admin()

    with TestClient(app) as tc:
        token = _session_for(tc, user.email, admin.email)
        headers = {"cookie": f"token={token}"}
        with tc.websocket_connect("/ws", headers=headers) as tab_one, tc.websocket_connect(
            "/ws", headers=headers
        ) as tab_two:
            assert tab_one.receive_json() == {"type": "ready", "data": {"user_id": user.id}}
            assert tab_two.receive_json()["type"] == "ready"
            assert app.state.registry.connection_count(user.id) == 2

            assert tc.put(f"/api/users/{user.id}/suspend").status_code == 200

            expected = {"type": "force-logout", "data": {"reason": "Account suspended"}}
            assert tab_one.receive_json() == expected
            assert tab_two.receive_json() == expected

        me = tc.get("/api/auth/me", headers=headers)
        assert me.status_code == 403
        assert me.json()["code"] == "ACCOUNT_SUSPENDED"
        assert app.state.registry.connection_count(user.id) == 0


@pytest.mark.asyncio
async def test_deletion_sends_account_deleted(app) -> None:
    user, _package, _subscription = await create_subscribed_user()
    admin = await create_test_admin()

    with TestClient(app) as tc:
        token = _session_for(tc, user.email, admin.email)
        with tc.websocket_connect("/ws", headers={"cookie": f"token={token}"}) as tab:
            assert tab.receive_json()["type"] == "ready"
            assert tc.delete(f"/api/users/{user.id}").status_code == 200
            assert tab.receive_json() == {
                "type": "force-logout",
                "data": {"reason": "Account deleted"},
            }

        assert tc.get("/api/auth/me", headers={"cookie": f"token={token}"}).status_code == 401


@pytest.mark.asyncio
async def test_channel_answers_ping_and_unregisters_on_close(app) -> None:
    user, _package, _subscription = await create_subscribed_user()

    with TestClient(app) as tc:
        token = _login_token(tc, user.email)
        with tc.websocket_connect("/ws", headers={"cookie": f"token={token}"}) as tab:
            assert tab.receive_json()["type"] == "ready"
            tab.send_text("not json")
            tab.send_json({"type": "ping"})
            assert tab.receive_json() == {"type": "pong"}
            assert app.state.registry.connection_count(user.id) == 1
        assert app.state.registry.connection_count() == 0


@pytest.mark.asyncio
async def test_unauthenticated_channel_stays_inert(app) -> None:
    with TestClient(app) as tc:
        with tc.websocket_connect("/ws", headers={"cookie": "token=garbage"}) as tab:
            tab.send_json({"type": "ping"})
            # No ready event precedes the pong for an unknown identity.
            assert tab.receive_json() == {"type": "pong"}
            assert app.state.registry.connection_count() == 0


@pytest.mark.asyncio
async def test_binary_frames_are_ignored(app) -> None:
    user, _package, _subscription = await create_subscribed_user()

    with TestClient(app) as tc:
        token = _login_token(tc, user.email)
        with tc.websocket_connect("/ws", headers={"cookie": f"token={token}"}) as tab:
            assert tab.receive_json()["type"] == "ready"
            tab.send_bytes(b"\x00\x01")
            tab.send_json({"type": "ping"})
            assert tab.receive_json() == {"type": "pong"}
            assert app.state.registry.connection_count(user.id) == 1
        assert app.state.registry.connection_count() == 0
