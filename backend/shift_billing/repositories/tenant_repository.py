"""
Tenant repository.

Mutating callers load the tenant with get_for_update() inside their unit
of work, so every change to one tenant's billing rows is serialized on the
tenant row lock. Cross-tenant operations never share a transaction.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from shift_billing.models.tenant import Tenant, TenantStatus

logger = logging.getLogger(__name__)


class TenantRepository:
    """Repository for tenant access-state rows."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, tenant_id: str) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.id == tenant_id).first()

    def get_for_update(self, tenant_id: str) -> Optional[Tenant]:
        """Load the tenant with a row lock (SELECT ... FOR UPDATE)."""
        return (
            self.db.query(Tenant)
            .filter(Tenant.id == tenant_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_checkout_session(self, session_id: str) -> Optional[Tenant]:
        return (
            self.db.query(Tenant)
            .filter(Tenant.pending_checkout_session_id == session_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def add(self, tenant: Tenant) -> Tenant:
        self.db.add(tenant)
        self.db.flush()
        return tenant

    def list_grace_expired(
        self,
        now: datetime,
        limit: Optional[int] = None,
        after: Optional[Tuple[datetime, str]] = None,
    ) -> List[Tuple[str, datetime]]:
        """
        (id, grace_until) of tenants whose grace window has lapsed.

        Ordered by (grace_until, id) so callers can page through the
        candidates with a keyset cursor.

        Args:
            now: Reference time; tenants with grace_until strictly before it match
            limit: Optional cap on the number of rows returned
            after: (grace_until, id) of the last row of the previous page
        """
        query = self.db.query(Tenant.id, Tenant.grace_until).filter(
            Tenant.status == TenantStatus.GRACE.value,
            Tenant.grace_until < now,
        )
        if after is not None:
            last_grace_until, last_id = after
            query = query.filter(or_(
                Tenant.grace_until > last_grace_until,
                and_(Tenant.grace_until == last_grace_until, Tenant.id > last_id),
            ))
        query = query.order_by(Tenant.grace_until.asc(), Tenant.id.asc())
        if limit:
            query = query.limit(limit)
        return [(row[0], row[1]) for row in query.all()]
