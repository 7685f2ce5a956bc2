"""
Tests for the grace-expiry sweep.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from shift_billing.jobs.grace_expiry import SWEEP_ACTOR_ID, GraceExpirySweeper, main
from shift_billing.models.billing_audit_log import (
    ActorType,
    BillingAuditAction,
    BillingAuditLog,
)
from shift_billing.models.tenant import Tenant, TenantStatus
from shift_billing.tests.helpers.billing_events import T0, create_tenant


@pytest.fixture
def sweeper(db_session):
    return GraceExpirySweeper(db_session)


def _status(db, tenant_id):
    db.expire_all()
    return db.get(Tenant, tenant_id).status


def _grace_tenant(db, tenant_id, grace_until):
    return create_tenant(
        db,
        tenant_id=tenant_id,
        status=TenantStatus.GRACE.value,
        grace_until=grace_until,
    )


class TestGraceExpirySweep:

    def test_lapsed_grace_is_suspended_and_future_grace_untouched(self, db_session, sweeper):
        _grace_tenant(db_session, "lapsed", T0 - timedelta(seconds=1))
        _grace_tenant(db_session, "future", T0 + timedelta(hours=1))

        suspended = sweeper.sweep(now=T0)

        assert suspended == 1
        assert _status(db_session, "lapsed") == TenantStatus.SUSPENDED.value
        assert _status(db_session, "future") == TenantStatus.GRACE.value
        assert db_session.get(Tenant, "lapsed").grace_until is None

    def test_grace_ending_exactly_now_is_not_yet_suspended(self, db_session, sweeper):
        _grace_tenant(db_session, "boundary", T0)

        assert sweeper.sweep(now=T0) == 0
        assert _status(db_session, "boundary") == TenantStatus.GRACE.value

    def test_non_grace_tenants_are_ignored(self, db_session, sweeper):
        create_tenant(db_session, tenant_id="active", status=TenantStatus.ACTIVE.value)
        create_tenant(db_session, tenant_id="pending")

        assert sweeper.sweep(now=T0) == 0
        assert _status(db_session, "active") == TenantStatus.ACTIVE.value

    def test_rerun_is_a_no_op(self, db_session, sweeper):
        _grace_tenant(db_session, "lapsed", T0 - timedelta(days=1))

        assert sweeper.sweep(now=T0) == 1
        assert sweeper.sweep(now=T0 + timedelta(minutes=5)) == 0

        audit_rows = db_session.query(BillingAuditLog).filter(
            BillingAuditLog.tenant_id == "lapsed"
        ).all()
        assert len(audit_rows) == 1

    def test_suspension_is_audited_as_system(self, db_session, sweeper):
        _grace_tenant(db_session, "lapsed", T0 - timedelta(days=1))

        sweeper.sweep(now=T0)

        row = db_session.query(BillingAuditLog).filter(
            BillingAuditLog.tenant_id == "lapsed"
        ).one()
        assert row.action == BillingAuditAction.TENANT_SUSPENDED
        assert row.actor_type == ActorType.SYSTEM
        assert row.actor_id == SWEEP_ACTOR_ID
        assert row.before_state["status"] == TenantStatus.GRACE.value
        assert row.after_state == {"status": TenantStatus.SUSPENDED.value, "grace_until": None}

    def test_tenant_reactivated_after_selection_is_skipped(self, db_session, sweeper):
        _grace_tenant(db_session, "paid", T0 - timedelta(days=1))
        original = sweeper.tenants.get_for_update

        def reactivate_then_lock(tenant_id):
            tenant = original(tenant_id)
            tenant.activate()
            return tenant

        with patch.object(sweeper.tenants, "get_for_update", side_effect=reactivate_then_lock):
            assert sweeper.sweep(now=T0) == 0

        assert _status(db_session, "paid") == TenantStatus.ACTIVE.value

    def test_failure_on_one_tenant_does_not_stop_the_rest(self, db_session, sweeper):
        _grace_tenant(db_session, "broken", T0 - timedelta(days=2))
        _grace_tenant(db_session, "fine", T0 - timedelta(days=1))
        original = sweeper.tenants.get_for_update

        def flaky(tenant_id):
            if tenant_id == "broken":
                raise RuntimeError("lock timeout")
            return original(tenant_id)

        with patch.object(sweeper.tenants, "get_for_update", side_effect=flaky):
            suspended = sweeper.sweep(now=T0)

        assert suspended == 1
        assert sweeper.stats.tenants_failed == 1
        assert _status(db_session, "broken") == TenantStatus.GRACE.value
        assert _status(db_session, "fine") == TenantStatus.SUSPENDED.value

    def test_one_run_pages_through_every_lapsed_tenant(self, db_session):
        for i in range(5):
            _grace_tenant(db_session, f"lapsed-{i}", T0 - timedelta(days=i + 1))
        _grace_tenant(db_session, "not-yet", T0 + timedelta(hours=1))
        settings = MagicMock(sweep_batch_size=2)

        sweeper = GraceExpirySweeper(db_session, settings=settings)

        assert sweeper.sweep(now=T0) == 5
        assert sweeper.stats.tenants_checked == 5
        for i in range(5):
            assert _status(db_session, f"lapsed-{i}") == TenantStatus.SUSPENDED.value
        assert _status(db_session, "not-yet") == TenantStatus.GRACE.value
        assert sweeper.sweep(now=T0) == 0

    def test_paging_passes_tenants_sharing_a_grace_deadline(self, db_session):
        for i in range(3):
            _grace_tenant(db_session, f"same-{i}", T0 - timedelta(days=1))
        settings = MagicMock(sweep_batch_size=2)

        sweeper = GraceExpirySweeper(db_session, settings=settings, dry_run=True)

        assert sweeper.sweep(now=T0) == 3
        assert sweeper.stats.tenants_checked == 3

    def test_failed_tenant_is_not_retried_within_the_same_run(self, db_session):
        _grace_tenant(db_session, "broken", T0 - timedelta(days=3))
        for i in range(3):
            _grace_tenant(db_session, f"fine-{i}", T0 - timedelta(days=1))
        sweeper = GraceExpirySweeper(db_session, settings=MagicMock(sweep_batch_size=1))
        original = sweeper.tenants.get_for_update
        calls = []

        def flaky(tenant_id):
            calls.append(tenant_id)
            if tenant_id == "broken":
                raise RuntimeError("lock timeout")
            return original(tenant_id)

        with patch.object(sweeper.tenants, "get_for_update", side_effect=flaky):
            assert sweeper.sweep(now=T0) == 3

        assert calls.count("broken") == 1
        assert sweeper.stats.tenants_failed == 1
        assert _status(db_session, "broken") == TenantStatus.GRACE.value

    def test_dry_run_reports_without_changes(self, db_session):
        _grace_tenant(db_session, "lapsed", T0 - timedelta(days=1))
        sweeper = GraceExpirySweeper(db_session, dry_run=True)

        assert sweeper.sweep(now=T0) == 1

        stats = sweeper.stats.to_dict()
        assert stats["dry_run"] is True
        assert stats["tenants_checked"] == 1
        assert _status(db_session, "lapsed") == TenantStatus.GRACE.value
        assert db_session.query(BillingAuditLog).count() == 0


class TestGraceExpiryMain:

    def test_main_runs_sweep_per_session(self, db_session):
        with patch(
            "shift_billing.jobs.grace_expiry.get_db_session_sync",
            return_value=iter([db_session]),
        ), patch.object(GraceExpirySweeper, "sweep", return_value=0) as sweep:
            main(["--dry-run"])

        sweep.assert_called_once()

    def test_main_exits_nonzero_on_failure(self):
        with patch(
            "shift_billing.jobs.grace_expiry.get_db_session_sync",
            side_effect=ValueError("DATABASE_URL environment variable is required"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                main([])

        assert exc_info.value.code == 1
