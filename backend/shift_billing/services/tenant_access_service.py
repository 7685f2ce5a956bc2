"""
Tenant access query consumed by every request handler.

Answers "what may this tenant do right now" from stored tenant status plus
the entitlement resolver, and builds the billing status summary shown to
workspace owners.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from shift_billing.entitlements.access import AccessDecision, evaluate_access
from shift_billing.entitlements.errors import AccessDeniedError
from shift_billing.entitlements.resolver import resolve_with_outcome
from shift_billing.repositories.entitlement_repository import EntitlementRepository
from shift_billing.repositories.subscription_repository import SubscriptionRepository
from shift_billing.repositories.tenant_repository import TenantRepository

logger = logging.getLogger(__name__)


class PlanType:
    SUBSCRIPTION = "subscription"
    LIFETIME = "lifetime"
    NONE = "none"


class TenantAccessService:
    """Read-only billing access queries for one database session."""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.tenants = TenantRepository(db_session)
        self.subscriptions = SubscriptionRepository(db_session)
        self.entitlements = EntitlementRepository(db_session)

    def get_access(self, tenant_id: str, now: Optional[datetime] = None) -> AccessDecision:
        """
        Current access decision for a tenant.

        Raises:
            AccessDeniedError: ERR_TENANT_NOT_FOUND if the tenant does not exist
        """
        now = now or datetime.now(timezone.utc)
        tenant = self.tenants.get(tenant_id)
        if tenant is None:
            raise AccessDeniedError(AccessDeniedError.TENANT_NOT_FOUND, tenant_id=tenant_id)

        resolution = resolve_with_outcome(self.entitlements.list_for_tenant(tenant_id), now)
        decision = evaluate_access(tenant.id, tenant.status, resolution, grace_until=tenant.grace_until)

        if decision.revoked:
            logger.info("Tenant access denied by revoked entitlement", extra={
                "tenant_id": tenant_id,
                "status": tenant.status,
            })
        return decision

    def get_billing_status(self, tenant_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Billing summary for display.

        Plan type is 'lifetime' for a non-expiring effective grant,
        'subscription' when a recurring subscription backs the tenant, and
        'none' otherwise.
        """
        now = now or datetime.now(timezone.utc)
        decision = self.get_access(tenant_id, now)
        subscription = self.subscriptions.get_for_tenant(tenant_id)
        effective = decision.effective_entitlement

        if effective is not None and effective.is_lifetime:
            plan_type = PlanType.LIFETIME
        elif subscription is not None:
            plan_type = PlanType.SUBSCRIPTION
        else:
            plan_type = PlanType.NONE

        return {
            "tenant_id": tenant_id,
            "plan_type": plan_type,
            "status": decision.status,
            "access_level": decision.access_level.value,
            "can_read": decision.can_read,
            "can_write": decision.can_write,
            "revoked": decision.revoked,
            "grace_until": decision.grace_until.isoformat() if decision.grace_until else None,
            "subscription_status": subscription.status if subscription else None,
            "current_period_end": (
                subscription.current_period_end.isoformat()
                if subscription and subscription.current_period_end else None
            ),
            "cancel_at_period_end": bool(subscription.cancel_at_period_end) if subscription else False,
            "cancel_at": (
                subscription.cancel_at.isoformat() if subscription and subscription.cancel_at else None
            ),
            "effective_entitlement": effective.to_dict() if effective else None,
        }
