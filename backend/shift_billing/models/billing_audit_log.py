"""
BillingAuditLog model for the billing audit trail.

CRITICAL: This table is APPEND-ONLY. Rows are written in the same
transaction as the change they describe and are never updated.
"""

from sqlalchemy import Column, String, Index, JSON

from shift_billing.db_base import Base
from shift_billing.models.base import TenantScopedMixin, UTCDateTime, generate_uuid, utcnow


class BillingAuditAction:
    """Audit action constants."""
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    TENANT_STATUS_CHANGED = "tenant_status_changed"
    TENANT_SUSPENDED = "tenant_suspended"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    ENTITLEMENT_GRANTED = "entitlement_granted"
    ENTITLEMENT_REVOKED = "entitlement_revoked"


class ActorType:
    """Actor type constants."""
    SYSTEM = "system"
    PROVIDER = "provider"
    ADMIN = "admin"


class BillingAuditLog(Base, TenantScopedMixin):
    """Immutable record of a billing state change."""

    __tablename__ = "billing_audit_logs"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    actor_type = Column(
        String(20),
        nullable=False,
        comment="system | provider | admin"
    )
    actor_id = Column(
        String(255),
        nullable=True,
        comment="Admin user id or provider name"
    )

    action = Column(
        String(50),
        nullable=False,
        index=True,
        comment="What happened"
    )

    event_id = Column(
        String(255),
        nullable=True,
        comment="Webhook event that caused the change, if any"
    )

    before_state = Column(JSON, nullable=True)
    after_state = Column(JSON, nullable=True)
    extra_metadata = Column(JSON, nullable=True)

    created_at = Column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        comment="When the change was recorded"
    )

    __table_args__ = (
        Index("ix_billing_audit_logs_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<BillingAuditLog(id={self.id}, tenant_id={self.tenant_id}, "
            f"action={self.action}, actor_type={self.actor_type})>"
        )
