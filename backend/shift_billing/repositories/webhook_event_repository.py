"""
Idempotency ledger repository.

record() is the only gate for webhook processing. It inserts inside a
SAVEPOINT and relies on the (provider, external_event_id) unique
constraint: a racing second delivery fails the insert, the savepoint is
rolled back, and the caller's outer transaction stays usable.
"""

import enum
import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shift_billing.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


class RecordOutcome(enum.Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"


def compute_payload_hash(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    if payload is None:
        return None
    payload_str = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(payload_str.encode()).hexdigest()


class WebhookEventRepository:
    """Repository for the webhook idempotency ledger."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def record(
        self,
        provider: str,
        event_id: str,
        event_type: str,
        payload: Optional[Dict[str, Any]],
        received_at: Optional[datetime] = None,
    ) -> RecordOutcome:
        """
        Insert the ledger row for (provider, event_id).

        Args:
            provider: Payment processor name
            event_id: Processor event ID
            event_type: Processor event type
            payload: Raw payload snapshot
            received_at: Receipt time (defaults to now)

        Returns:
            ACCEPTED if newly persisted, DUPLICATE if the pair already existed
        """
        event = WebhookEvent(
            provider=provider,
            external_event_id=event_id,
            event_type=event_type,
            payload=payload,
            payload_hash=compute_payload_hash(payload),
        )
        if received_at is not None:
            event.received_at = received_at

        try:
            with self.db.begin_nested():
                self.db.add(event)
        except IntegrityError:
            logger.info("Duplicate webhook event", extra={
                "provider": provider,
                "event_id": event_id,
                "event_type": event_type,
            })
            return RecordOutcome.DUPLICATE

        return RecordOutcome.ACCEPTED

    def exists(self, provider: str, event_id: str) -> bool:
        return self.db.query(WebhookEvent.id).filter(
            WebhookEvent.provider == provider,
            WebhookEvent.external_event_id == event_id,
        ).first() is not None

    def count(self) -> int:
        return self.db.query(WebhookEvent).count()

    def count_older_than(self, cutoff: datetime) -> int:
        return self.db.query(WebhookEvent).filter(
            WebhookEvent.received_at < cutoff
        ).count()

    def delete_older_than(self, cutoff: datetime, batch_size: int) -> int:
        """
        Delete one batch of ledger rows received before cutoff.

        Returns:
            Number of rows deleted (0 when nothing is left)
        """
        ids = [
            row[0]
            for row in self.db.query(WebhookEvent.id)
            .filter(WebhookEvent.received_at < cutoff)
            .order_by(WebhookEvent.received_at.asc())
            .limit(batch_size)
            .all()
        ]
        if not ids:
            return 0
        return self.db.query(WebhookEvent).filter(
            WebhookEvent.id.in_(ids)
        ).delete(synchronize_session=False)
