"""
Root test configuration and fixtures.

Every test gets a fresh in-memory SQLite database with SAVEPOINT support,
so the webhook ledger's nested-transaction gate behaves as it does on
PostgreSQL.
"""

import os
import pytest
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from shift_billing.config.billing_settings import reset_billing_settings
from shift_billing.database.session import enable_sqlite_savepoints
from shift_billing.tests.helpers.billing_events import TEST_WEBHOOK_SECRET

# Set test environment
os.environ.setdefault("ENV", "test")


@pytest.fixture(autouse=True)
def billing_env(monkeypatch):
    """Known webhook secret and a freshly loaded settings singleton per test."""
    monkeypatch.setenv("BILLING_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("BILLING_CONFIG_PATH", raising=False)
    reset_billing_settings()
    yield
    reset_billing_settings()


@pytest.fixture
def db_engine():
    """SQLite in-memory engine with all billing tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)

    from shift_billing.db_base import Base
    import shift_billing.models  # noqa: F401 - registers all tables

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def api_app(db_session):
    """
    App with the billing routers mounted and the auth layer stubbed.

    X-Test-Tenant / X-Test-Admin headers stand in for the identity the
    authentication middleware would put on request.state.
    """
    from fastapi import FastAPI, Request

    from shift_billing.api.routes import billing, webhooks_billing
    from shift_billing.database.session import get_db_session

    app = FastAPI()
    app.include_router(webhooks_billing.router)
    app.include_router(billing.router)
    app.include_router(billing.admin_router)

    @app.middleware("http")
    async def test_auth_context(request: Request, call_next):
        request.state.tenant_id = request.headers.get("X-Test-Tenant")
        request.state.admin_id = request.headers.get("X-Test-Admin")
        return await call_next(request)

    def override_db_session():
        yield db_session

    app.dependency_overrides[get_db_session] = override_db_session
    return app


@pytest.fixture
def client(api_app):
    from fastapi.testclient import TestClient

    return TestClient(api_app)
