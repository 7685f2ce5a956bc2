"""
Entitlement resolution and billing access gating.

Usage:
    from shift_billing.entitlements import resolve, evaluate_access, Operation
"""

from shift_billing.entitlements.resolver import (
    EffectiveEntitlement,
    Resolution,
    ResolutionOutcome,
    resolve,
    resolve_with_outcome,
)
from shift_billing.entitlements.access import (
    AccessDecision,
    AccessLevel,
    Operation,
    access_level_for_status,
    evaluate_access,
)
from shift_billing.entitlements.errors import AccessDeniedError, BillingAccessError

__all__ = [
    "EffectiveEntitlement",
    "Resolution",
    "ResolutionOutcome",
    "resolve",
    "resolve_with_outcome",
    "AccessDecision",
    "AccessLevel",
    "Operation",
    "access_level_for_status",
    "evaluate_access",
    "AccessDeniedError",
    "BillingAccessError",
]
