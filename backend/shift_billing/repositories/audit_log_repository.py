"""Append-only writer and reader for billing audit rows."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from shift_billing.models.billing_audit_log import BillingAuditLog

logger = logging.getLogger(__name__)


class AuditLogRepository:
    """Repository for billing audit rows. Insert and read only."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def append(
        self,
        tenant_id: str,
        action: str,
        actor_type: str,
        actor_id: Optional[str] = None,
        event_id: Optional[str] = None,
        before_state: Optional[Dict[str, Any]] = None,
        after_state: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BillingAuditLog:
        entry = BillingAuditLog(
            tenant_id=tenant_id,
            action=action,
            actor_type=actor_type,
            actor_id=actor_id,
            event_id=event_id,
            before_state=before_state,
            after_state=after_state,
            extra_metadata=metadata,
        )
        self.db.add(entry)
        return entry

    def list_for_tenant(
        self,
        tenant_id: str,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[BillingAuditLog]:
        query = self.db.query(BillingAuditLog).filter(BillingAuditLog.tenant_id == tenant_id)
        if action:
            query = query.filter(BillingAuditLog.action == action)
        query = query.order_by(BillingAuditLog.created_at.asc())
        if limit:
            query = query.limit(limit)
        return query.all()
