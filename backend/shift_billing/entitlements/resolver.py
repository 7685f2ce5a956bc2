"""
Entitlement resolver: picks the single effective grant for a tenant.

Pure and deterministic; no I/O. Resolution order:
    1. Any revoked grant            -> REVOKED (overrides everything)
    2. Valid non-expiring grants    -> GRANTED, earliest-started one
    3. Valid expiring grants        -> GRANTED, furthest ends_at
    4. Nothing valid                -> NONE

A grant is valid at `now` when it is not revoked, has started, and its
ends_at is null or strictly after `now`.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional


class ResolutionOutcome(enum.Enum):
    GRANTED = "granted"
    REVOKED = "revoked"
    NONE = "none"


@dataclass(frozen=True)
class EffectiveEntitlement:
    """Read-only view of the grant that currently applies to a tenant."""
    entitlement_id: Optional[str]
    tenant_id: Optional[str]
    plan_code: str
    source: str
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]

    @property
    def is_lifetime(self) -> bool:
        return self.ends_at is None

    @classmethod
    def from_entitlement(cls, entitlement) -> "EffectiveEntitlement":
        return cls(
            entitlement_id=entitlement.id,
            tenant_id=entitlement.tenant_id,
            plan_code=entitlement.plan_code,
            source=entitlement.source,
            starts_at=entitlement.starts_at,
            ends_at=entitlement.ends_at,
        )

    def to_dict(self) -> dict:
        return {
            "entitlement_id": self.entitlement_id,
            "plan_code": self.plan_code,
            "source": self.source,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "lifetime": self.is_lifetime,
        }


@dataclass(frozen=True)
class Resolution:
    outcome: ResolutionOutcome
    entitlement: Optional[EffectiveEntitlement] = None

    @property
    def is_revoked(self) -> bool:
        return self.outcome == ResolutionOutcome.REVOKED

    @property
    def is_granted(self) -> bool:
        return self.outcome == ResolutionOutcome.GRANTED


def _is_valid(entitlement, now: datetime) -> bool:
    if entitlement.revoked_at is not None:
        return False
    if entitlement.starts_at is not None and entitlement.starts_at > now:
        return False
    return entitlement.ends_at is None or entitlement.ends_at > now


def _tiebreak(entitlement) -> str:
    return str(entitlement.id or "")


def resolve_with_outcome(entitlements: Iterable, now: datetime) -> Resolution:
    """
    Resolve a tenant's grants, keeping the reason when nothing applies.

    Args:
        entitlements: Grants of one tenant (anything with starts_at, ends_at, revoked_at)
        now: Reference time

    Returns:
        Resolution with outcome GRANTED, REVOKED or NONE
    """
    grants = list(entitlements)

    if any(e.revoked_at is not None for e in grants):
        return Resolution(ResolutionOutcome.REVOKED)

    valid = [e for e in grants if _is_valid(e, now)]
    if not valid:
        return Resolution(ResolutionOutcome.NONE)

    lifetime = [e for e in valid if e.ends_at is None]
    if lifetime:
        chosen = min(lifetime, key=lambda e: (e.starts_at is None, e.starts_at, _tiebreak(e)))
    else:
        chosen = max(valid, key=lambda e: (e.ends_at, _tiebreak(e)))

    return Resolution(ResolutionOutcome.GRANTED, EffectiveEntitlement.from_entitlement(chosen))


def resolve(entitlements: Iterable, now: datetime) -> Optional[EffectiveEntitlement]:
    """Return the effective grant, or None when revoked or nothing is valid."""
    return resolve_with_outcome(entitlements, now).entitlement
