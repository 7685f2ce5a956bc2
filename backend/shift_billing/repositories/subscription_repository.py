"""
Subscription repository for data access operations.

Only the webhook reconciler writes through this repository.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from shift_billing.models.subscription import Subscription

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """Repository for subscription data access."""

    def __init__(self, db_session: Session):
        """
        Initialize repository with database session.

        Args:
            db_session: SQLAlchemy database session
        """
        self.db = db_session

    def _query(self, for_update: bool):
        query = self.db.query(Subscription)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query

    def get_for_tenant(self, tenant_id: str, for_update: bool = False) -> Optional[Subscription]:
        return self._query(for_update).filter(
            Subscription.tenant_id == tenant_id
        ).first()

    def get_by_external_id(
        self,
        external_subscription_id: str,
        for_update: bool = False,
    ) -> Optional[Subscription]:
        """
        Get subscription by the processor's subscription reference.

        Args:
            external_subscription_id: Processor subscription ID
            for_update: Lock the row and refresh it from the database.
                Mutating callers take the tenant lock first.

        Returns:
            Subscription if found, None otherwise
        """
        return self._query(for_update).filter(
            Subscription.external_subscription_id == external_subscription_id
        ).first()

    def add(self, subscription: Subscription) -> Subscription:
        self.db.add(subscription)
        self.db.flush()
        return subscription
