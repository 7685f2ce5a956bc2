"""Entitlement repository."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from shift_billing.models.entitlement import Entitlement, EntitlementSource

logger = logging.getLogger(__name__)


class EntitlementRepository:
    """Repository for entitlement data access, always scoped by tenant_id."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_by_id(self, entitlement_id: str) -> Optional[Entitlement]:
        return self.db.query(Entitlement).filter(
            Entitlement.id == entitlement_id
        ).first()

    def list_for_tenant(self, tenant_id: str) -> List[Entitlement]:
        return (
            self.db.query(Entitlement)
            .filter(Entitlement.tenant_id == tenant_id)
            .order_by(Entitlement.starts_at.asc())
            .all()
        )

    def list_live_recurring(self, tenant_id: str, now: datetime) -> List[Entitlement]:
        """
        Unrevoked recurring-billing grants that have not ended yet.

        Args:
            tenant_id: Owning tenant
            now: Reference time
        """
        return (
            self.db.query(Entitlement)
            .filter(
                Entitlement.tenant_id == tenant_id,
                Entitlement.source == EntitlementSource.RECURRING_BILLING.value,
                Entitlement.revoked_at.is_(None),
                or_(Entitlement.ends_at.is_(None), Entitlement.ends_at > now),
            )
            .order_by(Entitlement.starts_at.asc())
            .all()
        )

    def add(self, entitlement: Entitlement) -> Entitlement:
        self.db.add(entitlement)
        self.db.flush()
        return entitlement

    def latest_for_reference(self, tenant_id: str, external_reference: str) -> Optional[Entitlement]:
        """Most recently started unrevoked recurring grant tied to a processor subscription."""
        return (
            self.db.query(Entitlement)
            .filter(
                Entitlement.tenant_id == tenant_id,
                Entitlement.source == EntitlementSource.RECURRING_BILLING.value,
                Entitlement.external_reference == external_reference,
                Entitlement.revoked_at.is_(None),
            )
            .order_by(Entitlement.starts_at.desc())
            .first()
        )
