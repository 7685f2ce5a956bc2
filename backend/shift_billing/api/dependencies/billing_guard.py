"""
Billing access guard dependencies.

Every route that reads or mutates workspace data depends on one of these.
The tenant is taken from request.state.tenant_id, which the
authentication layer sets; it is never read from client input.
"""

import logging
from typing import Callable

from fastapi import Request, HTTPException, status, Depends

from shift_billing.database.session import get_db_session
from shift_billing.entitlements.access import Operation
from shift_billing.entitlements.errors import AccessDeniedError
from shift_billing.services.tenant_access_service import TenantAccessService

logger = logging.getLogger(__name__)


def get_request_tenant_id(request: Request) -> str:
    """Tenant resolved by the authentication layer. 401 if absent."""
    tenant_id = getattr(request.state, "tenant_id", None)
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Tenant context required",
        )
    return tenant_id


def get_request_admin_id(request: Request) -> str:
    """Administrator identity set by the authentication layer. 403 if absent."""
    admin_id = getattr(request.state, "admin_id", None)
    if not admin_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )
    return admin_id


def create_billing_access_check(operation: Operation) -> Callable:
    """
    Factory function to create a billing access dependency.

    Args:
        operation: READ or WRITE

    Returns:
        A FastAPI dependency that raises 403 with a reason code when the
        tenant's billing state forbids the operation, and returns the
        db_session otherwise
    """

    def check_billing_access(
        request: Request,
        db_session=Depends(get_db_session),
    ):
        tenant_id = get_request_tenant_id(request)
        service = TenantAccessService(db_session)
        try:
            decision = service.get_access(tenant_id)
            decision.require(operation)
        except AccessDeniedError as e:
            logger.warning(
                "Billing access denied",
                extra={
                    "tenant_id": tenant_id,
                    "operation": operation.value,
                    "code": e.code,
                    "status": e.tenant_status,
                },
            )
            raise HTTPException(status_code=e.http_status, detail=e.to_dict())

        return db_session

    return check_billing_access


require_read_access = create_billing_access_check(Operation.READ)
require_write_access = create_billing_access_check(Operation.WRITE)
