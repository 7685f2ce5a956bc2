"""
Structured error classes for billing access enforcement.
"""

from typing import Optional
from fastapi import status


class BillingAccessError(Exception):
    """Base exception for billing access errors."""
    pass


class AccessDeniedError(BillingAccessError):
    """
    Raised when a tenant's billing state does not permit an operation.

    Includes a machine-readable reason code for programmatic handling.
    """

    REVOKED = "ERR_ACCESS_REVOKED"
    PENDING_PAYMENT = "ERR_PENDING_PAYMENT"
    GRACE_PERIOD = "ERR_GRACE_PERIOD"
    SUSPENDED = "ERR_SUSPENDED"
    TENANT_NOT_FOUND = "ERR_TENANT_NOT_FOUND"

    MESSAGES = {
        REVOKED: "Access has been revoked",
        PENDING_PAYMENT: "Payment required before the workspace can be used",
        GRACE_PERIOD: "Subscription ended; the workspace is read-only during the grace period",
        SUSPENDED: "Workspace suspended; renew the subscription to make changes",
        TENANT_NOT_FOUND: "Tenant not found",
    }

    def __init__(
        self,
        code: str,
        tenant_id: Optional[str] = None,
        operation: Optional[str] = None,
        tenant_status: Optional[str] = None,
        http_status: int = status.HTTP_403_FORBIDDEN,
    ):
        self.code = code
        self.tenant_id = tenant_id
        self.operation = operation
        self.tenant_status = tenant_status
        self.http_status = http_status
        self.message = self.MESSAGES.get(code, "Access denied")
        super().__init__(f"{code}: {self.message}")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": self.code,
            "message": self.message,
            "operation": self.operation,
            "status": self.tenant_status,
        }
