"""
Billing webhook handler with idempotency support.

Reconciles the payment processor's webhook stream into tenant access state:
- Ledger insert is the dedup gate and shares the transaction with every
  effect, so a failed reconcile also forgets the event and the provider's
  retry starts clean
- Out-of-order tolerant: period boundaries only move forward, events for
  unknown subscriptions are logged and discarded
- Tenant row is locked for the duration of the transaction
- Every state change writes an audit row in the same transaction
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from shift_billing.config.billing_settings import BillingSettings, get_billing_settings
from shift_billing.database.session import transaction_scope
from shift_billing.models.billing_audit_log import ActorType, BillingAuditAction
from shift_billing.models.entitlement import Entitlement, EntitlementSource
from shift_billing.models.subscription import Subscription, SubscriptionStatus
from shift_billing.models.tenant import Tenant, TenantStatus
from shift_billing.repositories.audit_log_repository import AuditLogRepository
from shift_billing.repositories.entitlement_repository import EntitlementRepository
from shift_billing.repositories.subscription_repository import SubscriptionRepository
from shift_billing.repositories.tenant_repository import TenantRepository
from shift_billing.repositories.webhook_event_repository import (
    RecordOutcome,
    WebhookEventRepository,
)
from shift_billing.services.webhook_events import EventKind, WebhookEnvelope

logger = logging.getLogger(__name__)

DEFAULT_PLAN_CODE = "standard"


@dataclass
class WebhookProcessingResult:
    """Result of webhook processing."""
    processed: bool
    message: str
    duplicate: bool = False
    tenant_id: Optional[str] = None
    skipped_reason: Optional[str] = None
    error: Optional[str] = None


class BillingWebhookHandler:
    """
    Handler for billing webhooks with idempotency.

    Each delivery is applied exactly once per (provider, event_id):
    duplicates are acknowledged without effects.
    """

    def __init__(self, db_session: Session, settings: Optional[BillingSettings] = None):
        """
        Initialize webhook handler.

        Args:
            db_session: Database session
            settings: Billing settings (defaults to the loaded singleton)
        """
        self.db = db_session
        self.settings = settings or get_billing_settings()
        self.ledger = WebhookEventRepository(db_session)
        self.tenants = TenantRepository(db_session)
        self.subscriptions = SubscriptionRepository(db_session)
        self.entitlements = EntitlementRepository(db_session)
        self.audit = AuditLogRepository(db_session)

        self._handlers = {
            EventKind.CHECKOUT_COMPLETED: self._handle_checkout_completed,
            EventKind.PAYMENT_SUCCEEDED: self._handle_payment_succeeded,
            EventKind.PAYMENT_FAILED: self._handle_payment_failed,
            EventKind.SUBSCRIPTION_UPDATED: self._handle_subscription_updated,
            EventKind.SUBSCRIPTION_ENDED: self._handle_subscription_ended,
        }

    def handle(self, envelope: WebhookEnvelope, now: Optional[datetime] = None) -> WebhookProcessingResult:
        """
        Record and reconcile one webhook delivery in a single transaction.

        Args:
            envelope: Verified, parsed delivery
            now: Processing time (injected for tests)

        Returns:
            WebhookProcessingResult

        Raises:
            Exception: any storage or reconciliation failure, after rollback
        """
        now = now or datetime.now(timezone.utc)
        log_extra = {
            "provider": envelope.provider,
            "event_id": envelope.event_id,
            "event_type": envelope.event_type,
        }

        try:
            with transaction_scope(self.db):
                outcome = self.ledger.record(
                    envelope.provider,
                    envelope.event_id,
                    envelope.event_type,
                    envelope.snapshot,
                    received_at=now,
                )
                if outcome == RecordOutcome.DUPLICATE:
                    result = WebhookProcessingResult(
                        processed=False,
                        duplicate=True,
                        message="Duplicate webhook - already processed",
                        skipped_reason="duplicate",
                    )
                else:
                    handler = self._handlers.get(envelope.kind)
                    if handler is None:
                        logger.info("Unhandled billing event type acknowledged", extra=log_extra)
                        result = WebhookProcessingResult(
                            processed=True,
                            message=f"Event type not handled: {envelope.event_type}",
                            skipped_reason="unhandled_event_type",
                        )
                    else:
                        result = handler(envelope, now)
        except Exception:
            logger.exception("Error processing billing webhook, transaction rolled back", extra=log_extra)
            raise

        logger.info("Billing webhook handled", extra={
            **log_extra,
            "processed": result.processed,
            "duplicate": result.duplicate,
            "tenant_id": result.tenant_id,
            "skipped_reason": result.skipped_reason,
        })
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log_audit_event(
        self,
        envelope: WebhookEnvelope,
        tenant_id: str,
        action: str,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        self.audit.append(
            tenant_id=tenant_id,
            action=action,
            actor_type=ActorType.PROVIDER,
            actor_id=envelope.provider,
            event_id=envelope.event_id,
            before_state=before_state,
            after_state=after_state,
            metadata=metadata,
        )

    def _change_tenant_status(
        self,
        envelope: WebhookEnvelope,
        tenant: Tenant,
        new_status: str,
        grace_until: Optional[datetime] = None,
    ) -> None:
        before = tenant.to_state()
        if new_status == TenantStatus.ACTIVE.value:
            tenant.activate()
        else:
            tenant.transition_to(new_status, grace_until=grace_until)
        self._log_audit_event(
            envelope,
            tenant.id,
            BillingAuditAction.TENANT_STATUS_CHANGED,
            before_state=before,
            after_state=tenant.to_state(),
        )
        logger.info("Tenant billing status changed", extra={
            "tenant_id": tenant.id,
            "event_id": envelope.event_id,
            "from_status": before["status"],
            "to_status": tenant.status,
        })

    def _discard(self, envelope: WebhookEnvelope, reason: str, message: str) -> WebhookProcessingResult:
        logger.warning(message, extra={
            "event_id": envelope.event_id,
            "event_type": envelope.event_type,
            "external_subscription_id": envelope.data.external_subscription_id,
            "reason": reason,
        })
        return WebhookProcessingResult(
            processed=False,
            message=message,
            skipped_reason=reason,
        )

    def _load_subscription_and_tenant(self, envelope: WebhookEnvelope):
        """
        Look up the subscription by processor id and lock its tenant.

        The first read only finds the owning tenant. Once the tenant row is
        locked the subscription is read again under its own lock, so a
        transaction that committed while this one waited is never overwritten
        with stale period or status values.
        """
        external_id = envelope.data.external_subscription_id
        if not external_id:
            return None, None
        subscription = self.subscriptions.get_by_external_id(external_id)
        if subscription is None:
            return None, None
        tenant = self.tenants.get_for_update(subscription.tenant_id)
        subscription = self.subscriptions.get_by_external_id(external_id, for_update=True)
        if subscription is None or tenant is None or subscription.tenant_id != tenant.id:
            return None, None
        return subscription, tenant

    def _find_checkout_tenant(self, envelope: WebhookEnvelope) -> Optional[Tenant]:
        data = envelope.data
        if data.checkout_session_id:
            tenant = self.tenants.get_by_checkout_session(data.checkout_session_id)
            if tenant is not None:
                return tenant
        if data.tenant_reference:
            return self.tenants.get_for_update(data.tenant_reference)
        return None

    def _grant_recurring_entitlement(
        self,
        envelope: WebhookEnvelope,
        tenant: Tenant,
        subscription: Subscription,
        now: datetime,
    ) -> Entitlement:
        """End any live recurring grant and create a fresh one for this subscription."""
        for previous in self.entitlements.list_live_recurring(tenant.id, now):
            previous.ends_at = now

        entitlement = self.entitlements.add(Entitlement(
            tenant_id=tenant.id,
            plan_code=subscription.plan_code or DEFAULT_PLAN_CODE,
            source=EntitlementSource.RECURRING_BILLING.value,
            external_reference=subscription.external_subscription_id,
            starts_at=now,
            ends_at=subscription.current_period_end,
        ))
        self._log_audit_event(
            envelope,
            tenant.id,
            BillingAuditAction.ENTITLEMENT_GRANTED,
            after_state=entitlement.to_state(),
        )
        return entitlement

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _handle_checkout_completed(self, envelope: WebhookEnvelope, now: datetime) -> WebhookProcessingResult:
        """
        First payment (or re-subscription) confirmed.

        pending_payment / grace / suspended -> active, with a new recurring
        grant. For an already active tenant the subscription is refreshed
        and a grant is only created if none exists for it.
        """
        data = envelope.data
        if data.checkout_mode != "subscription":
            return WebhookProcessingResult(
                processed=True,
                message=f"Checkout mode {data.checkout_mode!r} ignored",
                skipped_reason="not_subscription_checkout",
            )
        if not data.external_subscription_id:
            return self._discard(envelope, "missing_subscription_id", "Checkout without subscription reference")

        tenant = self._find_checkout_tenant(envelope)
        if tenant is None:
            return self._discard(envelope, "tenant_not_found", "No tenant for completed checkout")

        subscription = self.subscriptions.get_for_tenant(tenant.id, for_update=True)
        if subscription is None:
            subscription = self.subscriptions.add(Subscription(
                tenant_id=tenant.id,
                external_customer_id=data.external_customer_id,
                external_subscription_id=data.external_subscription_id,
                plan_code=data.plan_code,
                status=SubscriptionStatus.ACTIVE.value,
                current_period_end=data.period_end,
                cancel_at_period_end=False,
            ))
            self._log_audit_event(
                envelope,
                tenant.id,
                BillingAuditAction.SUBSCRIPTION_CREATED,
                after_state=subscription.to_state(),
            )
        else:
            before = subscription.to_state()
            if subscription.external_subscription_id != data.external_subscription_id:
                # A new processor subscription replaces the old one wholesale
                subscription.external_subscription_id = data.external_subscription_id
                subscription.current_period_end = data.period_end
                subscription.cancel_at_period_end = False
                subscription.cancel_at = None
            else:
                subscription.advance_period(data.period_end)
            if data.external_customer_id:
                subscription.external_customer_id = data.external_customer_id
            if data.plan_code:
                subscription.plan_code = data.plan_code
            subscription.status = SubscriptionStatus.ACTIVE.value
            self._log_audit_event(
                envelope,
                tenant.id,
                BillingAuditAction.SUBSCRIPTION_UPDATED,
                before_state=before,
                after_state=subscription.to_state(),
            )

        existing = self.entitlements.latest_for_reference(tenant.id, subscription.external_subscription_id)
        if tenant.is_active and existing is not None and existing.is_valid_at(now):
            if (
                existing.ends_at is not None
                and subscription.current_period_end is not None
                and subscription.current_period_end > existing.ends_at
            ):
                existing.ends_at = subscription.current_period_end
        else:
            self._grant_recurring_entitlement(envelope, tenant, subscription, now)

        if tenant.status != TenantStatus.ACTIVE.value:
            self._change_tenant_status(envelope, tenant, TenantStatus.ACTIVE.value)
        else:
            tenant.pending_checkout_session_id = None

        return WebhookProcessingResult(
            processed=True,
            message="Checkout completed",
            tenant_id=tenant.id,
        )

    def _handle_payment_succeeded(self, envelope: WebhookEnvelope, now: datetime) -> WebhookProcessingResult:
        """
        Recurring payment confirmed.

        Only a strictly later period end has effects; an equal or older one
        is a reordered or repeated confirmation and changes nothing.
        """
        subscription, tenant = self._load_subscription_and_tenant(envelope)
        if subscription is None:
            return self._discard(envelope, "unknown_subscription", "Payment for unknown subscription discarded")

        period_end = envelope.data.period_end
        before = subscription.to_state()
        if not subscription.advance_period(period_end):
            self._log_audit_event(
                envelope,
                tenant.id,
                BillingAuditAction.PAYMENT_SUCCEEDED,
                before_state=before,
                after_state=before,
                metadata={"period_advanced": False},
            )
            return WebhookProcessingResult(
                processed=True,
                message="Payment period not newer than stored period; no change",
                tenant_id=tenant.id,
                skipped_reason="stale_period",
            )

        subscription.status = SubscriptionStatus.ACTIVE.value
        self._log_audit_event(
            envelope,
            tenant.id,
            BillingAuditAction.PAYMENT_SUCCEEDED,
            before_state=before,
            after_state=subscription.to_state(),
            metadata={"period_advanced": True},
        )

        entitlement = self.entitlements.latest_for_reference(tenant.id, subscription.external_subscription_id)
        if entitlement is None:
            if tenant.status in (TenantStatus.ACTIVE.value, TenantStatus.GRACE.value):
                self._grant_recurring_entitlement(envelope, tenant, subscription, now)
        elif entitlement.ends_at is not None and entitlement.ends_at < period_end:
            entitlement.ends_at = period_end

        if tenant.status == TenantStatus.GRACE.value:
            self._change_tenant_status(envelope, tenant, TenantStatus.ACTIVE.value)
        elif tenant.status == TenantStatus.SUSPENDED.value:
            logger.info("Payment for suspended tenant recorded; a new checkout is required", extra={
                "tenant_id": tenant.id,
                "event_id": envelope.event_id,
            })

        return WebhookProcessingResult(
            processed=True,
            message="Payment recorded",
            tenant_id=tenant.id,
        )

    def _handle_payment_failed(self, envelope: WebhookEnvelope, now: datetime) -> WebhookProcessingResult:
        """
        A single failed charge. Recorded only; tenant status waits for the
        terminal subscription-ended event.
        """
        subscription, tenant = self._load_subscription_and_tenant(envelope)
        if subscription is None:
            return self._discard(envelope, "unknown_subscription", "Payment failure for unknown subscription discarded")

        before = subscription.to_state()
        if subscription.status in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value):
            subscription.status = SubscriptionStatus.PAST_DUE.value

        self._log_audit_event(
            envelope,
            tenant.id,
            BillingAuditAction.PAYMENT_FAILED,
            before_state=before,
            after_state=subscription.to_state(),
            metadata={"attempt_count": envelope.data.attempt_count},
        )
        logger.warning("Billing payment failed", extra={
            "tenant_id": tenant.id,
            "event_id": envelope.event_id,
            "attempt_count": envelope.data.attempt_count,
        })

        return WebhookProcessingResult(
            processed=True,
            message="Payment failure recorded",
            tenant_id=tenant.id,
        )

    def _handle_subscription_updated(self, envelope: WebhookEnvelope, now: datetime) -> WebhookProcessingResult:
        """Cancellation flags only; tenant keeps full access until the period elapses."""
        subscription, tenant = self._load_subscription_and_tenant(envelope)
        if subscription is None:
            return self._discard(envelope, "unknown_subscription", "Update for unknown subscription discarded")

        data = envelope.data
        before = subscription.to_state()
        if data.cancel_at_period_end is not None:
            subscription.cancel_at_period_end = data.cancel_at_period_end
        subscription.cancel_at = data.cancel_at

        after = subscription.to_state()
        if after != before:
            self._log_audit_event(
                envelope,
                tenant.id,
                BillingAuditAction.SUBSCRIPTION_UPDATED,
                before_state=before,
                after_state=after,
            )

        return WebhookProcessingResult(
            processed=True,
            message="Subscription cancellation settings updated",
            tenant_id=tenant.id,
        )

    def _handle_subscription_ended(self, envelope: WebhookEnvelope, now: datetime) -> WebhookProcessingResult:
        """
        Terminal signal: start the grace window.

        grace_until = max(stored, payload) period end + grace window. A
        tenant already in grace only ever has its window extended.
        """
        subscription, tenant = self._load_subscription_and_tenant(envelope)
        if subscription is None:
            return self._discard(envelope, "unknown_subscription", "End of unknown subscription discarded")

        before = subscription.to_state()
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.advance_period(envelope.data.period_end)
        period_end = subscription.current_period_end
        if period_end is None:
            logger.warning("Ended subscription has no period end; grace starts now", extra={
                "tenant_id": tenant.id,
                "event_id": envelope.event_id,
            })
            period_end = now
        self._log_audit_event(
            envelope,
            tenant.id,
            BillingAuditAction.SUBSCRIPTION_UPDATED,
            before_state=before,
            after_state=subscription.to_state(),
        )

        entitlement = self.entitlements.latest_for_reference(tenant.id, subscription.external_subscription_id)
        if entitlement is not None:
            entitlement.ends_at = period_end

        grace_until = period_end + self.settings.grace_period
        if tenant.status == TenantStatus.ACTIVE.value:
            self._change_tenant_status(envelope, tenant, TenantStatus.GRACE.value, grace_until=grace_until)
        elif tenant.status == TenantStatus.GRACE.value and grace_until > tenant.grace_until:
            self._change_tenant_status(envelope, tenant, TenantStatus.GRACE.value, grace_until=grace_until)

        return WebhookProcessingResult(
            processed=True,
            message="Subscription ended",
            tenant_id=tenant.id,
        )


def get_webhook_handler(db_session: Session) -> BillingWebhookHandler:
    """
    Factory function to create a BillingWebhookHandler.

    Args:
        db_session: Database session

    Returns:
        BillingWebhookHandler instance
    """
    return BillingWebhookHandler(db_session)
