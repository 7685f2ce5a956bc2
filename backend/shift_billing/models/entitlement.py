"""
Entitlement model: one access grant for a tenant from any source.

A tenant may hold several at once (an expiring subscription grant next to
a freshly claimed lifetime key). revoked_at, once set, is never cleared.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Index

from shift_billing.db_base import Base
from shift_billing.models.base import (
    TimestampMixin, TenantScopedMixin, UTCDateTime, generate_uuid
)


class EntitlementSource(enum.Enum):
    RECURRING_BILLING = "recurring_billing"
    ONE_TIME_KEY = "one_time_key"
    MANUAL = "manual"


class Entitlement(Base, TimestampMixin, TenantScopedMixin):
    """Access grant with a validity window and optional revocation."""

    __tablename__ = "entitlements"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    plan_code = Column(
        String(100),
        nullable=False,
        comment="Plan this grant unlocks"
    )

    source = Column(
        String(50),
        nullable=False,
        index=True,
        comment="recurring_billing | one_time_key | manual"
    )

    external_reference = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Processor subscription id or license key reference"
    )

    starts_at = Column(
        UTCDateTime,
        nullable=False,
        comment="Start of validity"
    )
    ends_at = Column(
        UTCDateTime,
        nullable=True,
        comment="End of validity; NULL means non-expiring"
    )

    revoked_at = Column(
        UTCDateTime,
        nullable=True,
        comment="Set once by administrative revocation, never cleared"
    )
    revoked_reason = Column(
        String(500),
        nullable=True
    )

    __table_args__ = (
        Index("ix_entitlements_tenant_source", "tenant_id", "source"),
    )

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def is_lifetime(self) -> bool:
        return self.ends_at is None

    def is_valid_at(self, now: datetime) -> bool:
        """Not revoked, already started, and not yet ended."""
        if self.revoked_at is not None:
            return False
        if self.starts_at is not None and self.starts_at > now:
            return False
        return self.ends_at is None or self.ends_at > now

    def revoke(self, now: datetime, reason: Optional[str] = None) -> bool:
        """
        Mark the grant revoked.

        Returns:
            False if it was already revoked (original timestamp kept)
        """
        if self.revoked_at is not None:
            return False
        self.revoked_at = now
        self.revoked_reason = reason
        return True

    def to_state(self) -> dict:
        return {
            "id": self.id,
            "plan_code": self.plan_code,
            "source": self.source,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<Entitlement(id={self.id}, tenant_id={self.tenant_id}, source={self.source}, "
            f"ends_at={self.ends_at}, revoked_at={self.revoked_at})>"
        )
