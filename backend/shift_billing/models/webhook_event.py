"""
WebhookEvent model: the idempotency ledger for billing webhooks.

A delivery is processed only if its (provider, external_event_id) row can
be inserted. The unique constraint is the gate; there is no separate
check-then-insert step.
"""

from sqlalchemy import Column, String, Index, UniqueConstraint, JSON

from shift_billing.db_base import Base
from shift_billing.models.base import UTCDateTime, generate_uuid, utcnow


class WebhookEvent(Base):
    """
    One row per distinct delivered billing event.

    Immutable once written. Only the retention job deletes rows, by age.
    """

    __tablename__ = "billing_webhook_events"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)"
    )

    provider = Column(
        String(50),
        nullable=False,
        comment="Payment processor name"
    )

    external_event_id = Column(
        String(255),
        nullable=False,
        comment="Processor event ID"
    )

    event_type = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Processor event type (e.g., invoice.paid)"
    )

    payload = Column(
        JSON,
        nullable=True,
        comment="Raw payload snapshot"
    )

    payload_hash = Column(
        String(64),
        nullable=True,
        comment="SHA-256 hash of payload for debugging"
    )

    received_at = Column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        comment="When the delivery was first accepted"
    )

    __table_args__ = (
        UniqueConstraint(
            "provider",
            "external_event_id",
            name="uq_billing_webhook_events_provider_event"
        ),
        Index("ix_billing_webhook_events_received_at", "received_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WebhookEvent(id={self.id}, provider={self.provider}, "
            f"event_id={self.external_event_id}, type={self.event_type})>"
        )
