"""
Tests for read/write gating derived from tenant status and entitlements.

Read is permitted in {active, grace, suspended}; write only in {active};
pending_payment permits neither; a revoked entitlement denies both.
"""

from datetime import timedelta

import pytest

from shift_billing.entitlements.access import (
    AccessLevel,
    Operation,
    access_level_for_status,
    evaluate_access,
)
from shift_billing.entitlements.errors import AccessDeniedError
from shift_billing.entitlements.resolver import Resolution, ResolutionOutcome
from shift_billing.models.entitlement import EntitlementSource
from shift_billing.models.tenant import TenantStatus
from shift_billing.services.tenant_access_service import TenantAccessService
from shift_billing.tests.helpers.billing_events import (
    T0,
    create_entitlement,
    create_tenant,
)

READABLE = {TenantStatus.ACTIVE.value, TenantStatus.GRACE.value, TenantStatus.SUSPENDED.value}
WRITABLE = {TenantStatus.ACTIVE.value}

GRANTED = Resolution(ResolutionOutcome.GRANTED)
REVOKED = Resolution(ResolutionOutcome.REVOKED)


class TestStatusAccessTable:

    @pytest.mark.parametrize("status", [s.value for s in TenantStatus])
    def test_read_and_write_sets_are_exact(self, status):
        decision = evaluate_access("t1", status, GRANTED)

        assert decision.can_read is (status in READABLE)
        assert decision.can_write is (status in WRITABLE)

    def test_pending_payment_permits_nothing(self):
        level = access_level_for_status(TenantStatus.PENDING_PAYMENT.value)

        assert level == AccessLevel.NONE
        assert not level.allows_reads()
        assert not level.allows_writes()

    def test_unknown_status_permits_nothing(self):
        assert access_level_for_status("frozen") == AccessLevel.NONE

    @pytest.mark.parametrize("status", [s.value for s in TenantStatus])
    def test_revocation_denies_every_status(self, status):
        decision = evaluate_access("t1", status, REVOKED)

        assert decision.can_read is False
        assert decision.can_write is False
        assert decision.denial_code(Operation.READ) == AccessDeniedError.REVOKED
        assert decision.denial_code(Operation.WRITE) == AccessDeniedError.REVOKED


class TestDenialCodes:

    @pytest.mark.parametrize("status,code", [
        (TenantStatus.GRACE.value, AccessDeniedError.GRACE_PERIOD),
        (TenantStatus.SUSPENDED.value, AccessDeniedError.SUSPENDED),
        (TenantStatus.PENDING_PAYMENT.value, AccessDeniedError.PENDING_PAYMENT),
    ])
    def test_write_denial_reason(self, status, code):
        decision = evaluate_access("t1", status, GRANTED)

        with pytest.raises(AccessDeniedError) as exc_info:
            decision.require(Operation.WRITE)

        assert exc_info.value.code == code
        assert exc_info.value.to_dict()["error"] == code
        assert exc_info.value.http_status == 403

    def test_active_tenant_passes_both_checks(self):
        decision = evaluate_access("t1", TenantStatus.ACTIVE.value, GRANTED)

        decision.require(Operation.READ)
        decision.require(Operation.WRITE)

    def test_pending_payment_read_denial_reason(self):
        decision = evaluate_access("t1", TenantStatus.PENDING_PAYMENT.value, GRANTED)

        assert decision.denial_code(Operation.READ) == AccessDeniedError.PENDING_PAYMENT


class TestTenantAccessService:

    def test_unknown_tenant_raises_not_found(self, db_session):
        with pytest.raises(AccessDeniedError) as exc_info:
            TenantAccessService(db_session).get_access("missing", T0)

        assert exc_info.value.code == AccessDeniedError.TENANT_NOT_FOUND

    def test_active_tenant_with_revoked_key_is_denied_without_status_change(self, db_session):
        tenant = create_tenant(db_session, status=TenantStatus.ACTIVE.value)
        create_entitlement(db_session, tenant.id, ends_at=None)
        create_entitlement(db_session, tenant.id, ends_at=None, revoked_at=T0 - timedelta(minutes=1))

        decision = TenantAccessService(db_session).get_access(tenant.id, T0)

        assert decision.revoked is True
        assert decision.can_read is False
        db_session.refresh(tenant)
        assert tenant.status == TenantStatus.ACTIVE.value

    def test_grace_tenant_is_read_only(self, db_session):
        tenant = create_tenant(
            db_session,
            status=TenantStatus.GRACE.value,
            grace_until=T0 + timedelta(days=3),
        )

        decision = TenantAccessService(db_session).get_access(tenant.id, T0)

        assert decision.access_level == AccessLevel.READ_ONLY
        assert decision.grace_until == T0 + timedelta(days=3)

    def test_effective_entitlement_is_reported(self, db_session):
        tenant = create_tenant(db_session, status=TenantStatus.ACTIVE.value)
        grant = create_entitlement(db_session, tenant.id, ends_at=T0 + timedelta(days=10))

        decision = TenantAccessService(db_session).get_access(tenant.id, T0)

        assert decision.effective_entitlement.entitlement_id == grant.id
        assert decision.to_dict()["effective_entitlement"]["lifetime"] is False

    def test_billing_status_reports_lifetime_plan(self, db_session):
        tenant = create_tenant(db_session, status=TenantStatus.ACTIVE.value)
        create_entitlement(
            db_session, tenant.id, source=EntitlementSource.ONE_TIME_KEY.value, ends_at=None
        )

        summary = TenantAccessService(db_session).get_billing_status(tenant.id, T0)

        assert summary["plan_type"] == "lifetime"
        assert summary["status"] == "active"
        assert summary["can_write"] is True
        assert summary["current_period_end"] is None

    def test_billing_status_without_grants(self, db_session):
        tenant = create_tenant(db_session)

        summary = TenantAccessService(db_session).get_billing_status(tenant.id, T0)

        assert summary["plan_type"] == "none"
        assert summary["can_read"] is False
        assert summary["effective_entitlement"] is None
