from __future__ import annotations

import os
import tempfile
from uuid import uuid4

# Point settings at a throwaway SQLite file before any subgate module reads them.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"subgate-test-{uuid4().hex}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_PATH}"
os.environ["SESSION_SECRET"] = "test-session-secret-please-change"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("BOOTSTRAP_ADMIN_EMAIL", None)
os.environ.pop("BOOTSTRAP_ADMIN_PASSWORD", None)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from subgate.apps.api.main import create_app  # noqa: E402
from subgate.core.config import get_settings  # noqa: E402
from subgate.persistence.db import drop_models, engine, init_models  # noqa: E402


@pytest.fixture(autouse=True)
async def reset_schema_between_tests() -> None:
    # Every test starts from empty tables; NullPool keeps connections loop-local.
    await init_models()
    yield
    await drop_models()
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Tests that monkeypatch env must not leak cached settings into later tests.
    yield
    get_settings.cache_clear()


@pytest.fixture
def app():
    # Fresh registry, broadcaster and locks per test.
    return create_app()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


def pytest_sessionfinish(session, exitstatus) -> None:
    if os.path.exists(_TEST_DB_PATH):
        os.remove(_TEST_DB_PATH)
