"""
Tenant model carrying the coarse billing access state.

CRITICAL: grace_until is set if and only if status is 'grace'. The check
constraint enforces it in storage; the transition methods below enforce it
in memory so a bad transition fails before flush.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, CheckConstraint, Index

from shift_billing.db_base import Base
from shift_billing.models.base import TimestampMixin, UTCDateTime


class TenantStatus(enum.Enum):
    PENDING_PAYMENT = "pending_payment"   # Awaiting first checkout
    ACTIVE = "active"                     # Full access
    GRACE = "grace"                       # Subscription ended, read-only until grace_until
    SUSPENDED = "suspended"               # Grace lapsed, read-only until a new checkout


class InvalidStatusTransitionError(ValueError):
    """Raised when a tenant status change is not allowed by the state machine."""

    def __init__(self, current_status: str, new_status: str, detail: Optional[str] = None):
        self.current_status = current_status
        self.new_status = new_status
        message = f"Invalid tenant status transition: {current_status} -> {new_status}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class Tenant(Base, TimestampMixin):
    """
    A customer workspace of the scheduling product.

    Lifecycle:
    1. Created pending_payment (awaiting checkout) or active (license key claim)
    2. Checkout completed -> active
    3. Subscription ended -> grace, grace_until = period end + grace window
    4. Payment while in grace -> active; grace lapses -> suspended (batch)
    5. New checkout while suspended -> active
    """

    __tablename__ = "tenants"

    # Same-state transitions are always allowed and are not listed.
    VALID_TRANSITIONS = {
        TenantStatus.PENDING_PAYMENT.value: [
            TenantStatus.ACTIVE.value,
            TenantStatus.SUSPENDED.value,
        ],
        TenantStatus.ACTIVE.value: [
            TenantStatus.GRACE.value,
            TenantStatus.SUSPENDED.value,
        ],
        TenantStatus.GRACE.value: [
            TenantStatus.ACTIVE.value,
            TenantStatus.SUSPENDED.value,
        ],
        TenantStatus.SUSPENDED.value: [
            TenantStatus.ACTIVE.value,
            TenantStatus.PENDING_PAYMENT.value,
        ],
    }

    id = Column(
        String(255),
        primary_key=True,
        comment="Opaque tenant identifier (immutable)"
    )

    name = Column(
        String(255),
        nullable=True,
        comment="Display name"
    )

    status = Column(
        String(50),
        nullable=False,
        default=TenantStatus.PENDING_PAYMENT.value,
        index=True,
        comment="Billing access state"
    )

    grace_until = Column(
        UTCDateTime,
        nullable=True,
        comment="End of read-only grace window; set only while status is grace"
    )

    pending_checkout_session_id = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Checkout session awaiting completion"
    )

    __table_args__ = (
        CheckConstraint(
            "(status = 'grace' AND grace_until IS NOT NULL) OR "
            "(status <> 'grace' AND grace_until IS NULL)",
            name="ck_tenants_grace_until_iff_grace",
        ),
        Index("ix_tenants_status_grace_until", "status", "grace_until"),
    )

    def can_transition_to(self, new_status: str) -> bool:
        if new_status == self.status:
            return True
        return new_status in self.VALID_TRANSITIONS.get(self.status, [])

    def transition_to(self, new_status: str, grace_until: Optional[datetime] = None) -> None:
        """
        Move to new_status, keeping grace_until consistent with it.

        Raises:
            InvalidStatusTransitionError: transition not allowed, or grace
                requested without a grace_until.
        """
        if new_status not in self.VALID_TRANSITIONS:
            raise InvalidStatusTransitionError(self.status, new_status, "unknown status")
        if not self.can_transition_to(new_status):
            raise InvalidStatusTransitionError(self.status, new_status)
        if new_status == TenantStatus.GRACE.value:
            if grace_until is None:
                raise InvalidStatusTransitionError(
                    self.status, new_status, "grace requires grace_until"
                )
            self.grace_until = grace_until
        else:
            self.grace_until = None
        self.status = new_status

    def activate(self) -> None:
        self.transition_to(TenantStatus.ACTIVE.value)
        self.pending_checkout_session_id = None

    def enter_grace(self, grace_until: datetime) -> None:
        self.transition_to(TenantStatus.GRACE.value, grace_until=grace_until)

    def suspend(self) -> None:
        self.transition_to(TenantStatus.SUSPENDED.value)

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE.value

    @property
    def is_in_grace(self) -> bool:
        return self.status == TenantStatus.GRACE.value

    def to_state(self) -> dict:
        """Snapshot used for audit before/after records."""
        return {
            "status": self.status,
            "grace_until": self.grace_until.isoformat() if self.grace_until else None,
        }

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, status={self.status}, grace_until={self.grace_until})>"
