"""
Tests for the tenant status state machine and the grace_until invariant.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from shift_billing.models.tenant import InvalidStatusTransitionError, Tenant, TenantStatus
from shift_billing.tests.helpers.billing_events import T0, create_tenant

ACTIVE = TenantStatus.ACTIVE.value
GRACE = TenantStatus.GRACE.value
SUSPENDED = TenantStatus.SUSPENDED.value
PENDING = TenantStatus.PENDING_PAYMENT.value


def _tenant(status, grace_until=None) -> Tenant:
    return Tenant(id="t-sm", status=status, grace_until=grace_until)


class TestTransitions:

    @pytest.mark.parametrize("current,target", [
        (PENDING, ACTIVE),
        (PENDING, SUSPENDED),
        (ACTIVE, SUSPENDED),
        (GRACE, ACTIVE),
        (GRACE, SUSPENDED),
        (SUSPENDED, ACTIVE),
        (SUSPENDED, PENDING),
    ])
    def test_allowed_transitions(self, current, target):
        grace_until = T0 if current == GRACE else None
        tenant = _tenant(current, grace_until)

        tenant.transition_to(target)

        assert tenant.status == target
        assert tenant.grace_until is None

    @pytest.mark.parametrize("current,target", [
        (PENDING, GRACE),
        (SUSPENDED, GRACE),
        (ACTIVE, PENDING),
        (GRACE, PENDING),
    ])
    def test_disallowed_transitions_raise(self, current, target):
        grace_until = T0 if current == GRACE else None
        tenant = _tenant(current, grace_until)

        with pytest.raises(InvalidStatusTransitionError):
            tenant.transition_to(target, grace_until=T0)

        assert tenant.status == current

    @pytest.mark.parametrize("status", [PENDING, ACTIVE, SUSPENDED])
    def test_same_state_is_allowed(self, status):
        tenant = _tenant(status)

        tenant.transition_to(status)

        assert tenant.status == status

    def test_unknown_status_rejected(self):
        with pytest.raises(InvalidStatusTransitionError):
            _tenant(ACTIVE).transition_to("frozen")


class TestGraceInvariant:

    def test_enter_grace_requires_grace_until(self):
        tenant = _tenant(ACTIVE)

        with pytest.raises(InvalidStatusTransitionError):
            tenant.transition_to(GRACE)

        assert tenant.status == ACTIVE
        assert tenant.grace_until is None

    def test_enter_grace_sets_grace_until(self):
        tenant = _tenant(ACTIVE)

        tenant.enter_grace(T0 + timedelta(days=14))

        assert tenant.status == GRACE
        assert tenant.grace_until == T0 + timedelta(days=14)

    def test_leaving_grace_clears_grace_until(self):
        tenant = _tenant(GRACE, T0)

        tenant.activate()

        assert tenant.grace_until is None

    def test_activate_clears_pending_checkout_session(self):
        tenant = Tenant(id="t-sm", status=PENDING, pending_checkout_session_id="cs_1")

        tenant.activate()

        assert tenant.pending_checkout_session_id is None

    def test_database_rejects_grace_without_grace_until(self, db_session):
        db_session.add(Tenant(id="t-bad", status=GRACE, grace_until=None))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_database_rejects_grace_until_outside_grace(self, db_session):
        db_session.add(Tenant(id="t-bad", status=ACTIVE, grace_until=T0))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_grace_until_round_trips_as_utc(self, db_session):
        tenant = create_tenant(db_session, status=GRACE, grace_until=T0)

        db_session.expire_all()
        reloaded = db_session.get(Tenant, tenant.id)

        assert reloaded.grace_until == T0
        assert reloaded.grace_until.tzinfo is not None
