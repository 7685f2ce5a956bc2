"""
Billing models.

Importing this package registers every table on Base.metadata.
"""

from shift_billing.models.tenant import Tenant, TenantStatus, InvalidStatusTransitionError
from shift_billing.models.subscription import Subscription, SubscriptionStatus
from shift_billing.models.entitlement import Entitlement, EntitlementSource
from shift_billing.models.webhook_event import WebhookEvent
from shift_billing.models.billing_audit_log import (
    BillingAuditLog, BillingAuditAction, ActorType
)

__all__ = [
    "Tenant",
    "TenantStatus",
    "InvalidStatusTransitionError",
    "Subscription",
    "SubscriptionStatus",
    "Entitlement",
    "EntitlementSource",
    "WebhookEvent",
    "BillingAuditLog",
    "BillingAuditAction",
    "ActorType",
]
