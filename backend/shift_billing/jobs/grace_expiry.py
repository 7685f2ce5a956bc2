"""
Grace-expiry sweep.

Moves tenants whose grace window has lapsed from 'grace' to 'suspended'.
Each tenant is handled in its own transaction: one failure is logged and
counted, and the sweep carries on with the rest. The status predicate is
re-checked under the row lock, so overlapping runs and runs racing a
webhook for the same tenant are harmless.

Run on a fixed interval from the scheduler:
    python -m shift_billing.jobs.grace_expiry [--dry-run]

Configuration:
- DATABASE_URL: Database connection string
- DRY_RUN: "true" to report candidates without suspending them
- config/billing.yml grace.sweep_batch_size: Candidates read per page (default: 500)
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from shift_billing.config.billing_settings import BillingSettings, get_billing_settings
from shift_billing.database.session import get_db_session_sync, transaction_scope
from shift_billing.models.billing_audit_log import ActorType, BillingAuditAction
from shift_billing.models.tenant import TenantStatus
from shift_billing.repositories.audit_log_repository import AuditLogRepository
from shift_billing.repositories.tenant_repository import TenantRepository

logger = logging.getLogger(__name__)

SWEEP_ACTOR_ID = "grace_expiry_sweep"


class GraceExpiryStats:
    """Track sweep run statistics."""

    def __init__(self, dry_run: bool = False):
        self.tenants_checked = 0
        self.tenants_suspended = 0
        self.tenants_failed = 0
        self.dry_run = dry_run
        self.start_time = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "tenants_checked": self.tenants_checked,
            "tenants_suspended": self.tenants_suspended,
            "tenants_failed": self.tenants_failed,
            "dry_run": self.dry_run,
            "duration_seconds": duration,
        }


class GraceExpirySweeper:
    """Suspends tenants whose grace_until is in the past."""

    def __init__(
        self,
        db_session: Session,
        settings: Optional[BillingSettings] = None,
        dry_run: bool = False,
    ):
        self.db = db_session
        self.settings = settings or get_billing_settings()
        self.dry_run = dry_run
        self.tenants = TenantRepository(db_session)
        self.audit = AuditLogRepository(db_session)
        self.stats = GraceExpiryStats(dry_run=dry_run)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Run one sweep over every tenant whose grace window has lapsed.

        Candidates are read in pages of sweep_batch_size, each page in its
        own short transaction, until a page comes back empty. Each tenant
        is then suspended in its own transaction.

        Args:
            now: Reference time (injected for tests)

        Returns:
            Number of tenants transitioned to suspended (in dry-run mode,
            the number that would have been)
        """
        now = now or datetime.now(timezone.utc)
        self.stats = GraceExpiryStats(dry_run=self.dry_run)
        batch_size = self.settings.sweep_batch_size
        cursor = None

        while True:
            with transaction_scope(self.db):
                batch = self.tenants.list_grace_expired(now, limit=batch_size, after=cursor)
            if not batch:
                break
            self.stats.tenants_checked += len(batch)
            cursor = (batch[-1][1], batch[-1][0])

            if self.dry_run:
                self.stats.tenants_suspended += len(batch)
                logger.info("Grace expiry dry run", extra={
                    "candidates": [tenant_id for tenant_id, _ in batch],
                })
                continue

            for tenant_id, _ in batch:
                try:
                    if self._suspend_tenant(tenant_id, now):
                        self.stats.tenants_suspended += 1
                except Exception:
                    self.stats.tenants_failed += 1
                    logger.exception("Failed to suspend tenant after grace expiry", extra={
                        "tenant_id": tenant_id,
                    })

        logger.info("Grace expiry sweep completed", extra=self.stats.to_dict())
        return self.stats.tenants_suspended

    def _suspend_tenant(self, tenant_id: str, now: datetime) -> bool:
        with transaction_scope(self.db):
            tenant = self.tenants.get_for_update(tenant_id)
            if (
                tenant is None
                or tenant.status != TenantStatus.GRACE.value
                or tenant.grace_until is None
                or tenant.grace_until >= now
            ):
                # Changed since selection (payment arrived, another sweep ran)
                return False

            before = tenant.to_state()
            tenant.suspend()
            self.audit.append(
                tenant_id=tenant.id,
                action=BillingAuditAction.TENANT_SUSPENDED,
                actor_type=ActorType.SYSTEM,
                actor_id=SWEEP_ACTOR_ID,
                before_state=before,
                after_state=tenant.to_state(),
            )

        logger.info("Tenant suspended after grace expiry", extra={
            "tenant_id": tenant_id,
            "grace_until": before["grace_until"],
        })
        return True


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


def main(argv=None):
    """Main entry point for the grace-expiry sweep."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Suspend tenants whose grace period has lapsed")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=_env_flag("DRY_RUN"),
        help="Report tenants that would be suspended without changing them",
    )
    args = parser.parse_args(argv)

    logger.info("Grace expiry sweep starting", extra={"dry_run": args.dry_run})
    try:
        for session in get_db_session_sync():
            sweeper = GraceExpirySweeper(session, dry_run=args.dry_run)
            sweeper.sweep()
            logger.info("Grace expiry sweep stats", extra=sweeper.stats.to_dict())
    except Exception as e:
        logger.error("Grace expiry sweep failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)

    logger.info("Grace expiry sweep finished")


if __name__ == "__main__":
    main()
