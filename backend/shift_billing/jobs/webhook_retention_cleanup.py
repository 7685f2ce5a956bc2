"""
Webhook ledger retention cleanup.

Deletes idempotency-ledger rows older than the retention horizon. Purely
storage hygiene: once an event's effects are applied, the row only serves
duplicate detection within the window.

Run as a daily cron job:
    python -m shift_billing.jobs.webhook_retention_cleanup [--dry-run]

Configuration:
- config/billing.yml webhook.retention_days: Retention in days (default: 30)
- config/billing.yml webhook.retention_batch_size: Rows per delete batch (default: 1000)
- DRY_RUN: "true" to count without deleting
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

from shift_billing.config.billing_settings import BillingSettings, get_billing_settings
from shift_billing.database.session import get_db_session_sync, transaction_scope
from shift_billing.repositories.webhook_event_repository import WebhookEventRepository

logger = logging.getLogger(__name__)


class WebhookRetentionCleanup:
    """Deletes aged ledger rows in batches, one transaction per batch."""

    def __init__(
        self,
        db_session: Session,
        settings: Optional[BillingSettings] = None,
        retention_days: Optional[int] = None,
        batch_size: Optional[int] = None,
        dry_run: bool = False,
    ):
        settings = settings or get_billing_settings()
        self.db = db_session
        self.ledger = WebhookEventRepository(db_session)
        self.retention_days = retention_days or settings.webhook_retention_days
        self.batch_size = batch_size or settings.retention_batch_size
        self.dry_run = dry_run

    def run(self, now: Optional[datetime] = None) -> Dict:
        """
        Run the cleanup.

        Returns:
            Stats dict (rows_deleted, or rows_eligible in dry-run mode)
        """
        now = now or datetime.now(timezone.utc)
        start_time = datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.retention_days)
        stats = {
            "retention_days": self.retention_days,
            "cutoff_date": cutoff.isoformat(),
            "dry_run": self.dry_run,
            "rows_eligible": 0,
            "rows_deleted": 0,
            "batches": 0,
        }

        with transaction_scope(self.db):
            stats["rows_eligible"] = self.ledger.count_older_than(cutoff)

        if not self.dry_run:
            while True:
                with transaction_scope(self.db):
                    deleted = self.ledger.delete_older_than(cutoff, self.batch_size)
                if deleted == 0:
                    break
                stats["batches"] += 1
                stats["rows_deleted"] += deleted
                logger.info("Deleted webhook ledger batch", extra={
                    "batch_size": deleted,
                    "total_deleted": stats["rows_deleted"],
                })
                if deleted < self.batch_size:
                    break

        stats["duration_seconds"] = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info("Webhook retention cleanup completed", extra=stats)
        return stats


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


def main(argv=None):
    """Main entry point for webhook retention cleanup."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Delete aged billing webhook ledger rows")
    parser.add_argument("--dry-run", action="store_true", default=_env_flag("DRY_RUN"))
    parser.add_argument("--retention-days", type=int, default=None)
    args = parser.parse_args(argv)

    logger.info("Webhook retention cleanup starting")
    try:
        for session in get_db_session_sync():
            cleanup = WebhookRetentionCleanup(
                session,
                retention_days=args.retention_days,
                dry_run=args.dry_run,
            )
            cleanup.run()
    except Exception as e:
        logger.error("Webhook retention cleanup failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)

    logger.info("Webhook retention cleanup finished")


if __name__ == "__main__":
    main()
