"""
Subscription model mirroring the payment processor's recurring charge.

CRITICAL: One subscription per tenant. Rows are written only by the
webhook reconciler; nothing else mutates them.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Boolean, ForeignKey, Index

from shift_billing.db_base import Base
from shift_billing.models.base import TimestampMixin, UTCDateTime, generate_uuid


class SubscriptionStatus(enum.Enum):
    """Processor lifecycle vocabulary."""
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"


class Subscription(Base, TimestampMixin):
    """
    Tracks the processor's view of a tenant's recurring billing.

    current_period_end only ever moves forward, which makes reordered
    deliveries of payment confirmations harmless.
    """

    __tablename__ = "subscriptions"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
        comment="One subscription per tenant"
    )

    external_customer_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Processor customer reference"
    )
    external_subscription_id = Column(
        String(255),
        nullable=False,
        unique=True,
        comment="Processor subscription reference"
    )

    plan_code = Column(
        String(100),
        nullable=True,
        comment="Plan granted by this subscription"
    )

    status = Column(
        String(50),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
        index=True,
        comment="Processor subscription status"
    )

    current_period_end = Column(
        UTCDateTime,
        nullable=True,
        comment="End of the latest paid period"
    )
    cancel_at_period_end = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Customer scheduled cancellation at period end"
    )
    cancel_at = Column(
        UTCDateTime,
        nullable=True,
        comment="Scheduled cancellation time, if any"
    )

    __table_args__ = (
        Index("ix_subscriptions_status_period_end", "status", "current_period_end"),
    )

    def advance_period(self, period_end: Optional[datetime]) -> bool:
        """
        Move current_period_end forward to period_end.

        Returns:
            True if the boundary moved, False for a missing, equal or older value
        """
        if period_end is None:
            return False
        if self.current_period_end is not None and period_end <= self.current_period_end:
            return False
        self.current_period_end = period_end
        return True

    def to_state(self) -> dict:
        return {
            "status": self.status,
            "current_period_end": (
                self.current_period_end.isoformat() if self.current_period_end else None
            ),
            "cancel_at_period_end": bool(self.cancel_at_period_end),
            "cancel_at": self.cancel_at.isoformat() if self.cancel_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, tenant_id={self.tenant_id}, "
            f"status={self.status}, current_period_end={self.current_period_end})>"
        )
