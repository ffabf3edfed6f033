"""Pytest configuration and fixtures for Parley Core tests.

This module provides fixtures for:
- Database: SQLite in-memory shared through a StaticPool
- Settings: zero pacing delays so sync runs are instant
- Gateway: an in-memory FakeGateway in place of the broker
- HTTP client: AsyncClient for FastAPI testing
"""

from collections.abc import AsyncGenerator, Generator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from factories import FakeGateway, slack_connection
from parley_core.config import Settings
from parley_core.domain.models import Base


CUSTOMER_ID = "cust-1"
WEBHOOK_TOKEN = "hook-token"

# Pacing is disabled in tests
ZERO_DELAY_ENV = {
    "SYNC_CONNECTION_DELAY_SECONDS": "0",
    "SYNC_REQUEST_DELAY_SECONDS": "0",
    "RATE_LIMIT_RETRY_DELAY_SECONDS": "0",
    "MENTION_LOOKUP_DELAY_SECONDS": "0",
}


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Environment read by get_settings() inside request handlers."""
    for key, value in ZERO_DELAY_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("LOG_JSON", "false")
    monkeypatch.delenv("WEBHOOK_TOKEN", raising=False)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        mysql_url="sqlite+pysqlite:///:memory:",
        integration_api_url="https://broker.test",
        integration_workspace_key="ws-key",
        integration_workspace_secret="ws-secret",
        sync_connection_delay_seconds=0,
        sync_request_delay_seconds=0,
        rate_limit_retry_delay_seconds=0,
        mention_lookup_delay_seconds=0,
        sync_max_pages=50,
        sync_stale_after_seconds=300,
        message_max_length=4000,
    )


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sync_engine():
    """Create a synchronous SQLite in-memory engine for testing."""
    from sqlalchemy.dialects import sqlite

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite only autoincrements INTEGER PRIMARY KEY columns
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"

    Base.metadata.create_all(bind=engine)

    sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine) -> sessionmaker[Session]:
    """Create a synchronous session factory."""
    return sessionmaker(
        bind=sync_engine,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
def db_session(sync_session_factory) -> Generator[Session, None, None]:
    """Create a synchronous database session for testing."""
    session = sync_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# Gateway Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def fake_gateway() -> FakeGateway:
    """Gateway with one Slack connection and no data."""
    return FakeGateway(connections=[slack_connection()])


# -----------------------------------------------------------------------------
# FastAPI Test Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def test_app(sync_engine, sync_session_factory, fake_gateway) -> FastAPI:
    """Create a FastAPI test application with DB and gateway overrides."""
    from parley_core.api.deps import get_db, get_gateway, get_gateway_factory
    from parley_core.main import app

    def override_get_db():
        session = sync_session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_gateway_factory] = lambda: (lambda customer_id: fake_gateway)

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app, db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client acting as CUSTOMER_ID.

    Note: The db_session fixture is included to ensure the test database
    is set up before the client is created.
    """
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        headers={"x-auth-id": CUSTOMER_ID, "x-user-name": "Test Customer"},
    ) as ac:
        yield ac


@pytest.fixture
async def anonymous_client(test_app, db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client without identity headers."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def webhook_headers() -> dict[str, str]:
    return {"X-Integration-App-Token": WEBHOOK_TOKEN}


# -----------------------------------------------------------------------------
# Cleanup Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    from parley_core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
