# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Shared test fixtures for all HookFlow tests.
"""

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from hookflow.core.context import init_app_context, reset_app_context
from hookflow.core.metrics import service_metrics
from hookflow.core.owner import OwnerContext
from hookflow.runtime.webhook import WebhookCaller
from hookflow.storage.database import (
    close_db,
    create_all_tables,
    get_session_factory,
    override_engine_for_test,
)

# Ensure models are imported so Base.metadata knows about them
import hookflow.storage.models  # noqa: F401

HOOK_BASE = "http://hooks.test"


@pytest.fixture(autouse=True)
def reset_metrics():
    service_metrics.reset()
    yield
    service_metrics.reset()


@pytest.fixture
async def db_engine(tmp_path):
    """A fresh SQLite database file per test, wired in as the service engine."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hookflow.db'}")
    override_engine_for_test(engine)
    await create_all_tables()
    yield engine
    await close_db()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def owner() -> OwnerContext:
    return OwnerContext(owner_type="organization", owner_id="org-1")


@pytest.fixture
def other_owner() -> OwnerContext:
    return OwnerContext(owner_type="organization", owner_id="org-2")


@pytest.fixture
def owner_headers(owner) -> dict:
    return {"X-Owner-Type": owner.owner_type, "X-Owner-Id": owner.owner_id}


@pytest.fixture
def other_owner_headers(other_owner) -> dict:
    return {"X-Owner-Type": other_owner.owner_type, "X-Owner-Id": other_owner.owner_id}


@pytest.fixture
def delivered():
    """Every request the fake subscriber endpoints received."""
    return []


@pytest.fixture
def hook_transport(delivered):
    """
    Fake subscriber endpoints:
      /ok      → 200 "ok"
      /fail    → 500 "boom"
      /timeout → read timeout
      /down    → connection refused
    """

    def handler(request: httpx.Request) -> httpx.Response:
        delivered.append(request)
        path = request.url.path
        if path.startswith("/ok"):
            return httpx.Response(200, text="ok")
        if path.startswith("/fail"):
            return httpx.Response(500, text="boom")
        if path.startswith("/timeout"):
            raise httpx.ReadTimeout("timed out", request=request)
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


@pytest.fixture
def caller(hook_transport) -> WebhookCaller:
    return WebhookCaller(transport=hook_transport)


@pytest.fixture
def app_ctx(session_factory, caller):
    """AppContext bound to the test database and fake subscribers."""
    ctx = init_app_context(session_factory, caller=caller, schedule_interval=0.05)
    yield ctx
    reset_app_context()


@pytest.fixture
async def client(app_ctx):
    from hookflow.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
