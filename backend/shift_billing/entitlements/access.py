"""
Access levels derived from tenant status and the entitlement resolver.

Stored status decides read/write. The resolver contributes two things:
a revoked grant denies everything immediately (no batch sweep needed), and
the effective grant is reported for display.

    status            reads   writes
    active            yes     yes
    grace             yes     no
    suspended         yes     no
    pending_payment   no      no
    (any, revoked)    no      no
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from shift_billing.entitlements.errors import AccessDeniedError
from shift_billing.entitlements.resolver import EffectiveEntitlement, Resolution
from shift_billing.models.tenant import TenantStatus


class AccessLevel(str, enum.Enum):
    """Access levels for billing states."""

    FULL = "full"
    READ_ONLY = "read_only"
    NONE = "none"

    def allows_writes(self) -> bool:
        """Check if this access level allows write operations."""
        return self == AccessLevel.FULL

    def allows_reads(self) -> bool:
        """Check if this access level allows read operations."""
        return self != AccessLevel.NONE


class Operation(str, enum.Enum):
    READ = "read"
    WRITE = "write"


STATUS_ACCESS_LEVELS = {
    TenantStatus.ACTIVE.value: AccessLevel.FULL,
    TenantStatus.GRACE.value: AccessLevel.READ_ONLY,
    TenantStatus.SUSPENDED.value: AccessLevel.READ_ONLY,
    TenantStatus.PENDING_PAYMENT.value: AccessLevel.NONE,
}

_WRITE_DENIAL_CODES = {
    TenantStatus.GRACE.value: AccessDeniedError.GRACE_PERIOD,
    TenantStatus.SUSPENDED.value: AccessDeniedError.SUSPENDED,
    TenantStatus.PENDING_PAYMENT.value: AccessDeniedError.PENDING_PAYMENT,
}


def access_level_for_status(tenant_status: str) -> AccessLevel:
    return STATUS_ACCESS_LEVELS.get(tenant_status, AccessLevel.NONE)


@dataclass(frozen=True)
class AccessDecision:
    """Result of evaluating a tenant's billing access."""

    tenant_id: str
    status: str
    access_level: AccessLevel
    revoked: bool = False
    grace_until: Optional[datetime] = None
    effective_entitlement: Optional[EffectiveEntitlement] = None

    @property
    def can_read(self) -> bool:
        return self.access_level.allows_reads()

    @property
    def can_write(self) -> bool:
        return self.access_level.allows_writes()

    def denial_code(self, operation: Operation) -> Optional[str]:
        """Reason code for denying `operation`, or None if it is allowed."""
        if self.revoked:
            return AccessDeniedError.REVOKED
        if operation == Operation.WRITE:
            if self.can_write:
                return None
            return _WRITE_DENIAL_CODES.get(self.status, AccessDeniedError.SUSPENDED)
        if self.can_read:
            return None
        return AccessDeniedError.PENDING_PAYMENT

    def require(self, operation: Operation) -> None:
        """
        Raise if `operation` is not permitted.

        Raises:
            AccessDeniedError: with the matching reason code
        """
        code = self.denial_code(operation)
        if code is not None:
            raise AccessDeniedError(
                code,
                tenant_id=self.tenant_id,
                operation=operation.value,
                tenant_status=self.status,
            )

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "status": self.status,
            "access_level": self.access_level.value,
            "can_read": self.can_read,
            "can_write": self.can_write,
            "revoked": self.revoked,
            "grace_until": self.grace_until.isoformat() if self.grace_until else None,
            "effective_entitlement": (
                self.effective_entitlement.to_dict() if self.effective_entitlement else None
            ),
        }


def evaluate_access(
    tenant_id: str,
    tenant_status: str,
    resolution: Resolution,
    grace_until: Optional[datetime] = None,
) -> AccessDecision:
    """Combine stored status with the resolver outcome into an AccessDecision."""
    if resolution.is_revoked:
        level = AccessLevel.NONE
    else:
        level = access_level_for_status(tenant_status)
    return AccessDecision(
        tenant_id=tenant_id,
        status=tenant_status,
        access_level=level,
        revoked=resolution.is_revoked,
        grace_until=grace_until,
        effective_entitlement=resolution.entitlement,
    )
