"""
Tests for the webhook idempotency ledger.

The unique (provider, external_event_id) constraint is the only gate; a
duplicate insert must not poison the caller's surrounding transaction.
"""

from datetime import timedelta

import pytest

from shift_billing.database.session import transaction_scope
from shift_billing.models.tenant import Tenant
from shift_billing.models.webhook_event import WebhookEvent
from shift_billing.repositories.webhook_event_repository import (
    RecordOutcome,
    WebhookEventRepository,
    compute_payload_hash,
)
from shift_billing.tests.helpers.billing_events import T0


class TestRecord:

    def test_first_delivery_is_accepted(self, db_session):
        ledger = WebhookEventRepository(db_session)

        with transaction_scope(db_session):
            outcome = ledger.record("stripe", "evt_1", "invoice.paid", {"a": 1}, received_at=T0)

        assert outcome == RecordOutcome.ACCEPTED
        row = db_session.query(WebhookEvent).one()
        assert row.provider == "stripe"
        assert row.external_event_id == "evt_1"
        assert row.payload == {"a": 1}
        assert row.payload_hash == compute_payload_hash({"a": 1})
        assert row.received_at == T0

    def test_second_delivery_is_duplicate(self, db_session):
        ledger = WebhookEventRepository(db_session)
        with transaction_scope(db_session):
            ledger.record("stripe", "evt_1", "invoice.paid", {})

        with transaction_scope(db_session):
            outcome = ledger.record("stripe", "evt_1", "invoice.paid", {})

        assert outcome == RecordOutcome.DUPLICATE
        assert ledger.count() == 1

    def test_same_event_id_from_another_provider_is_distinct(self, db_session):
        ledger = WebhookEventRepository(db_session)
        with transaction_scope(db_session):
            first = ledger.record("stripe", "evt_1", "invoice.paid", {})
            second = ledger.record("paddle", "evt_1", "invoice.paid", {})

        assert first == second == RecordOutcome.ACCEPTED
        assert ledger.count() == 2

    def test_duplicate_inside_transaction_keeps_outer_work(self, db_session):
        ledger = WebhookEventRepository(db_session)
        with transaction_scope(db_session):
            ledger.record("stripe", "evt_1", "invoice.paid", {})

        with transaction_scope(db_session):
            db_session.add(Tenant(id="t-outer", status="active"))
            db_session.flush()
            assert ledger.record("stripe", "evt_1", "invoice.paid", {}) == RecordOutcome.DUPLICATE

        assert db_session.get(Tenant, "t-outer") is not None

    def test_rolled_back_record_can_be_retried(self, db_session):
        ledger = WebhookEventRepository(db_session)
        with pytest.raises(RuntimeError):
            with transaction_scope(db_session):
                ledger.record("stripe", "evt_1", "invoice.paid", {})
                raise RuntimeError("reconcile failed")

        assert ledger.count() == 0
        with transaction_scope(db_session):
            assert ledger.record("stripe", "evt_1", "invoice.paid", {}) == RecordOutcome.ACCEPTED

    def test_redelivery_through_another_session_records_once(self, session_factory):
        first, second = session_factory(), session_factory()
        try:
            with transaction_scope(first):
                a = WebhookEventRepository(first).record("stripe", "evt_redelivered", "invoice.paid", {})
            with transaction_scope(second):
                b = WebhookEventRepository(second).record("stripe", "evt_redelivered", "invoice.paid", {})
        finally:
            first.close()
            second.close()

        assert {a, b} == {RecordOutcome.ACCEPTED, RecordOutcome.DUPLICATE}


class TestRetentionQueries:

    def test_delete_older_than_respects_cutoff_and_batch(self, db_session):
        ledger = WebhookEventRepository(db_session)
        with transaction_scope(db_session):
            for i in range(5):
                ledger.record("stripe", f"old_{i}", "invoice.paid", {}, received_at=T0 - timedelta(days=40 + i))
            ledger.record("stripe", "new", "invoice.paid", {}, received_at=T0 - timedelta(days=1))

        cutoff = T0 - timedelta(days=30)
        with transaction_scope(db_session):
            assert ledger.count_older_than(cutoff) == 5
            deleted = ledger.delete_older_than(cutoff, batch_size=3)

        assert deleted == 3
        assert ledger.count() == 3
        assert ledger.exists("stripe", "new")
