"""
Administrative billing operations.

Revocation works purely at the entitlement layer: it never touches the
tenant row or the subscription, so it cannot block on (or be blocked by)
webhook reconciliation beyond ordinary row locks.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from shift_billing.database.session import transaction_scope
from shift_billing.models.billing_audit_log import ActorType, BillingAuditAction, BillingAuditLog
from shift_billing.models.entitlement import Entitlement, EntitlementSource
from shift_billing.models.tenant import Tenant
from shift_billing.repositories.audit_log_repository import AuditLogRepository
from shift_billing.repositories.entitlement_repository import EntitlementRepository
from shift_billing.repositories.tenant_repository import TenantRepository

logger = logging.getLogger(__name__)

# Sources an administrator may grant directly; recurring grants come only from webhooks
ADMIN_GRANTABLE_SOURCES = (
    EntitlementSource.ONE_TIME_KEY.value,
    EntitlementSource.MANUAL.value,
)


class BillingAdminError(Exception):
    """Base exception for administrative billing operations."""
    pass


class TenantNotFoundError(BillingAdminError):
    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found: {tenant_id}")


class EntitlementNotFoundError(BillingAdminError):
    def __init__(self, entitlement_id: str):
        self.entitlement_id = entitlement_id
        super().__init__(f"Entitlement not found: {entitlement_id}")


class BillingAdminService:
    """Administrator-driven changes to entitlements and tenant status."""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.tenants = TenantRepository(db_session)
        self.entitlements = EntitlementRepository(db_session)
        self.audit = AuditLogRepository(db_session)

    def revoke_entitlement(
        self,
        entitlement_id: str,
        reason: Optional[str],
        admin_id: str,
        now: Optional[datetime] = None,
    ) -> Entitlement:
        """
        Revoke a grant. Takes effect on the next access check.

        Repeating the call keeps the original revoked_at and writes no
        second audit row.

        Raises:
            EntitlementNotFoundError: unknown entitlement_id
        """
        now = now or datetime.now(timezone.utc)
        with transaction_scope(self.db):
            entitlement = self.entitlements.get_by_id(entitlement_id)
            if entitlement is None:
                raise EntitlementNotFoundError(entitlement_id)

            before = entitlement.to_state()
            if entitlement.revoke(now, reason):
                self.audit.append(
                    tenant_id=entitlement.tenant_id,
                    action=BillingAuditAction.ENTITLEMENT_REVOKED,
                    actor_type=ActorType.ADMIN,
                    actor_id=admin_id,
                    before_state=before,
                    after_state=entitlement.to_state(),
                    metadata={"reason": reason},
                )
                logger.info("Entitlement revoked", extra={
                    "tenant_id": entitlement.tenant_id,
                    "entitlement_id": entitlement_id,
                    "admin_id": admin_id,
                })
        return entitlement

    def grant_entitlement(
        self,
        tenant_id: str,
        plan_code: str,
        source: str,
        admin_id: str,
        ends_at: Optional[datetime] = None,
        external_reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Entitlement:
        """
        Grant a one-time-key or manual entitlement.

        Raises:
            ValueError: source is not admin-grantable
            TenantNotFoundError: unknown tenant_id
        """
        if source not in ADMIN_GRANTABLE_SOURCES:
            raise ValueError(f"Source {source!r} cannot be granted by an administrator")

        now = now or datetime.now(timezone.utc)
        with transaction_scope(self.db):
            tenant = self.tenants.get_for_update(tenant_id)
            if tenant is None:
                raise TenantNotFoundError(tenant_id)

            entitlement = self.entitlements.add(Entitlement(
                tenant_id=tenant_id,
                plan_code=plan_code,
                source=source,
                external_reference=external_reference,
                starts_at=now,
                ends_at=ends_at,
            ))
            self.audit.append(
                tenant_id=tenant_id,
                action=BillingAuditAction.ENTITLEMENT_GRANTED,
                actor_type=ActorType.ADMIN,
                actor_id=admin_id,
                after_state=entitlement.to_state(),
            )
        logger.info("Entitlement granted", extra={
            "tenant_id": tenant_id,
            "entitlement_id": entitlement.id,
            "source": source,
            "admin_id": admin_id,
        })
        return entitlement

    def override_status(
        self,
        tenant_id: str,
        new_status: str,
        admin_id: str,
        grace_until: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> Tenant:
        """
        Force a tenant status change through the state machine.

        Raises:
            TenantNotFoundError: unknown tenant_id
            InvalidStatusTransitionError: transition not allowed, or grace
                without grace_until
        """
        with transaction_scope(self.db):
            tenant = self.tenants.get_for_update(tenant_id)
            if tenant is None:
                raise TenantNotFoundError(tenant_id)

            before = tenant.to_state()
            tenant.transition_to(new_status, grace_until=grace_until)
            if tenant.to_state() != before:
                self.audit.append(
                    tenant_id=tenant_id,
                    action=BillingAuditAction.TENANT_STATUS_CHANGED,
                    actor_type=ActorType.ADMIN,
                    actor_id=admin_id,
                    before_state=before,
                    after_state=tenant.to_state(),
                    metadata={"reason": reason},
                )
        logger.info("Tenant billing status overridden", extra={
            "tenant_id": tenant_id,
            "from_status": before["status"],
            "to_status": new_status,
            "admin_id": admin_id,
        })
        return tenant

    def list_audit_logs(
        self,
        tenant_id: str,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[BillingAuditLog]:
        """
        Audit trail for one tenant, oldest first.

        Raises:
            TenantNotFoundError: unknown tenant_id
        """
        if self.tenants.get(tenant_id) is None:
            raise TenantNotFoundError(tenant_id)
        return self.audit.list_for_tenant(tenant_id, action=action, limit=limit)
