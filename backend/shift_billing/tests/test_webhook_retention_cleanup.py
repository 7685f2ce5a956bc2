"""
Tests for webhook ledger retention cleanup.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from shift_billing.database.session import transaction_scope
from shift_billing.jobs.webhook_retention_cleanup import WebhookRetentionCleanup, main
from shift_billing.repositories.webhook_event_repository import WebhookEventRepository
from shift_billing.tests.helpers.billing_events import T0


def _seed(db, ages_in_days):
    ledger = WebhookEventRepository(db)
    with transaction_scope(db):
        for i, age in enumerate(ages_in_days):
            ledger.record("stripe", f"evt_{i}", "invoice.paid", {"n": i}, received_at=T0 - timedelta(days=age))
    return ledger


class TestWebhookRetentionCleanup:

    def test_deletes_only_rows_past_retention(self, db_session):
        ledger = _seed(db_session, [45, 31, 29, 1])

        stats = WebhookRetentionCleanup(db_session, retention_days=30).run(now=T0)

        assert stats["rows_eligible"] == 2
        assert stats["rows_deleted"] == 2
        assert ledger.count() == 2
        assert ledger.exists("stripe", "evt_2")
        assert not ledger.exists("stripe", "evt_0")

    def test_deletes_in_batches(self, db_session):
        ledger = _seed(db_session, [40, 41, 42, 43, 44])

        stats = WebhookRetentionCleanup(db_session, retention_days=30, batch_size=2).run(now=T0)

        assert stats["rows_deleted"] == 5
        assert stats["batches"] == 3
        assert ledger.count() == 0

    def test_dry_run_counts_without_deleting(self, db_session):
        ledger = _seed(db_session, [45, 1])

        stats = WebhookRetentionCleanup(db_session, retention_days=30, dry_run=True).run(now=T0)

        assert stats["dry_run"] is True
        assert stats["rows_eligible"] == 1
        assert stats["rows_deleted"] == 0
        assert ledger.count() == 2

    def test_defaults_come_from_settings(self, db_session):
        cleanup = WebhookRetentionCleanup(db_session)

        assert cleanup.retention_days == 30
        assert cleanup.batch_size == 1000

    def test_deleted_event_id_is_accepted_again(self, db_session):
        ledger = _seed(db_session, [45])
        WebhookRetentionCleanup(db_session, retention_days=30).run(now=T0)

        with transaction_scope(db_session):
            outcome = ledger.record("stripe", "evt_0", "invoice.paid", {"n": 0}, received_at=T0)

        assert outcome.value == "accepted"


class TestRetentionCleanupMain:

    def test_main_passes_retention_override(self, db_session):
        with patch(
            "shift_billing.jobs.webhook_retention_cleanup.get_db_session_sync",
            return_value=iter([db_session]),
        ), patch(
            "shift_billing.jobs.webhook_retention_cleanup.WebhookRetentionCleanup"
        ) as cleanup_cls:
            main(["--retention-days", "7"])

        cleanup_cls.return_value.run.assert_called_once()
        assert cleanup_cls.call_args.kwargs["retention_days"] == 7
        assert cleanup_cls.call_args.kwargs["dry_run"] is False

    def test_main_exits_nonzero_on_failure(self):
        with patch(
            "shift_billing.jobs.webhook_retention_cleanup.get_db_session_sync",
            side_effect=RuntimeError("Database not configured"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                main([])

        assert exc_info.value.code == 1
