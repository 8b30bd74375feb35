"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files; pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from tortoise import Tortoise

from rentals.deps import (
    get_cache,
    get_current_user,
    get_now,
    get_payments_client,
    require_admin,
)
from rentals.routers import admin, booking, broadcast, deal, review, vehicle

from .factories import NOW, make_admin, make_customer
from .fakes import FakeCache

ROUTERS = (
    vehicle.router,
    booking.router,
    deal.router,
    review.router,
    broadcast.router,
    admin.router,
)


# ---------------------------------------------------------------------------
# Default no-op client mocks to prevent real HTTP calls in tests
# ---------------------------------------------------------------------------


def _noop_payments_client():
    mock = MagicMock()
    mock.create_intent = AsyncMock()
    mock.get_intent = AsyncMock()
    return mock


# ---------------------------------------------------------------------------
# App builder used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(current_user, payments_client=None, cache=None, now=NOW) -> FastAPI:
    """
    Fresh FastAPI app with auth dependencies overridden to return
    `current_user` unconditionally and the clock pinned to `now`.

    Pass `cache` / `payments_client` to inject a shared fake or custom mock.
    """
    app = FastAPI()
    for router in ROUTERS:
        app.include_router(router)

    async def _user():
        return current_user

    app.dependency_overrides[get_current_user] = _user
    if current_user.is_admin:
        app.dependency_overrides[require_admin] = _user

    fc = cache if cache is not None else FakeCache()
    pc = payments_client if payments_client is not None else _noop_payments_client()
    app.dependency_overrides[get_cache] = lambda: fc
    app.dependency_overrides[get_payments_client] = lambda: pc
    app.dependency_overrides[get_now] = lambda: now

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_cache():
    return FakeCache()


@pytest.fixture()
def customer_client(fake_cache):
    return TestClient(build_app(make_customer(), cache=fake_cache))


@pytest.fixture()
def admin_client(fake_cache):
    return TestClient(build_app(make_admin(), cache=fake_cache))


@pytest.fixture()
def anon_app(fake_cache):
    """
    App with NO auth overrides.
    Use this when you want the real identity deps to run so you can assert 401/403/422.
    """
    app = FastAPI()
    for router in ROUTERS:
        app.include_router(router)
    app.dependency_overrides[get_cache] = lambda: fake_cache
    app.dependency_overrides[get_now] = lambda: NOW
    return app


@pytest.fixture()
def client_factory(fake_cache):
    def _make(current_user, payments_client=None, cache=None, now=NOW) -> TestClient:
        return TestClient(
            build_app(
                current_user,
                payments_client=payments_client,
                cache=cache if cache is not None else fake_cache,
                now=now,
            ),
        )

    return _make


# ---------------------------------------------------------------------------
# Database: in-memory sqlite, fresh schema per test
# ---------------------------------------------------------------------------


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
async def db(anyio_backend):
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": ["rentals.models"]},
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()
