"""
Tests for session management and the unit-of-work scope.
"""

import pytest
from fastapi import HTTPException

from shift_billing.database import session as session_module
from shift_billing.database.session import (
    create_engine_for_url,
    get_db_session,
    get_db_session_sync,
    transaction_scope,
)
from shift_billing.models.tenant import Tenant
from shift_billing.tests.helpers.billing_events import create_tenant


@pytest.fixture
def unconfigured_database(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(session_module, "_engine", None)
    monkeypatch.setattr(session_module, "_SessionLocal", None)


class TestTransactionScope:

    def test_commits_on_success(self, db_session, session_factory):
        with transaction_scope(db_session):
            db_session.add(Tenant(id="T1", name="Acme", status="pending_payment"))

        other = session_factory()
        try:
            assert other.get(Tenant, "T1") is not None
        finally:
            other.close()

    def test_rolls_back_and_reraises(self, db_session):
        with pytest.raises(RuntimeError):
            with transaction_scope(db_session):
                db_session.add(Tenant(id="T1", name="Acme", status="pending_payment"))
                db_session.flush()
                raise RuntimeError("fail after write")

        assert db_session.get(Tenant, "T1") is None

    def test_savepoint_rollback_keeps_outer_work(self, db_session):
        create_tenant(db_session, tenant_id="T1")

        with transaction_scope(db_session):
            db_session.add(Tenant(id="T2", name="Kept", status="pending_payment"))
            nested = db_session.begin_nested()
            db_session.add(Tenant(id="T3", name="Dropped", status="pending_payment"))
            db_session.flush()
            nested.rollback()

        assert db_session.get(Tenant, "T2") is not None
        assert db_session.get(Tenant, "T3") is None


class TestSessionDependencies:

    def test_request_dependency_returns_503_without_database(self, unconfigured_database):
        with pytest.raises(HTTPException) as exc_info:
            next(get_db_session())

        assert exc_info.value.status_code == 503

    def test_job_sessions_raise_without_database(self, unconfigured_database):
        with pytest.raises(RuntimeError):
            next(get_db_session_sync())

    def test_legacy_postgres_scheme_is_normalized(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db:5432/app")

        assert session_module._get_database_url() == "postgresql://u:p@db:5432/app"

    def test_sqlite_engine_for_local_runs(self, tmp_path):
        engine = create_engine_for_url(f"sqlite:///{tmp_path / 'billing.db'}")
        try:
            with engine.connect() as conn:
                assert conn.exec_driver_sql("SELECT 1").scalar() == 1
        finally:
            engine.dispose()
