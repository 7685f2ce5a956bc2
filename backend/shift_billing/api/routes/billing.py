"""
Billing status and administrative endpoints.

Tenant endpoints read the tenant from request.state (set by the
authentication layer). Admin endpoints require request.state.admin_id.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from shift_billing.api.dependencies.billing_guard import (
    get_request_admin_id,
    get_request_tenant_id,
)
from shift_billing.database.session import get_db_session
from shift_billing.entitlements.errors import AccessDeniedError
from shift_billing.models.tenant import InvalidStatusTransitionError
from shift_billing.services.billing_admin_service import (
    BillingAdminService,
    EntitlementNotFoundError,
    TenantNotFoundError,
)
from shift_billing.services.tenant_access_service import TenantAccessService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])
admin_router = APIRouter(prefix="/api/admin/billing", tags=["admin", "billing"])


class RevokeEntitlementRequest(BaseModel):
    reason: Optional[str] = None


class StatusOverrideRequest(BaseModel):
    status: str
    grace_until: Optional[datetime] = None
    reason: Optional[str] = None


class GrantEntitlementRequest(BaseModel):
    plan_code: str
    source: str
    ends_at: Optional[datetime] = None
    external_reference: Optional[str] = None


class EntitlementResponse(BaseModel):
    id: str
    tenant_id: str
    plan_code: str
    source: str
    starts_at: datetime
    ends_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None


class TenantStatusResponse(BaseModel):
    tenant_id: str
    status: str
    grace_until: Optional[datetime] = None


class AuditLogResponse(BaseModel):
    id: str
    tenant_id: str
    action: str
    actor_type: str
    actor_id: Optional[str] = None
    event_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


def _entitlement_response(entitlement) -> EntitlementResponse:
    return EntitlementResponse(
        id=entitlement.id,
        tenant_id=entitlement.tenant_id,
        plan_code=entitlement.plan_code,
        source=entitlement.source,
        starts_at=entitlement.starts_at,
        ends_at=entitlement.ends_at,
        revoked_at=entitlement.revoked_at,
        revoked_reason=entitlement.revoked_reason,
    )


def _require_aware(value: Optional[datetime], field: str) -> None:
    if value is not None and value.tzinfo is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{field} must include a timezone offset",
        )


@router.get("/status")
def get_billing_status(request: Request, db: Session = Depends(get_db_session)):
    """
    Billing summary for the current tenant.

    Not access-guarded: a pending or suspended workspace must still be able
    to see what it owes.
    """
    tenant_id = get_request_tenant_id(request)
    try:
        return TenantAccessService(db).get_billing_status(tenant_id)
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict())


@router.get("/access")
def get_access(request: Request, db: Session = Depends(get_db_session)):
    """Current read/write decision for the tenant."""
    tenant_id = get_request_tenant_id(request)
    try:
        return TenantAccessService(db).get_access(tenant_id).to_dict()
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict())


@admin_router.post("/entitlements/{entitlement_id}/revoke", response_model=EntitlementResponse)
def revoke_entitlement(
    entitlement_id: str,
    body: RevokeEntitlementRequest,
    request: Request,
    db: Session = Depends(get_db_session),
):
    admin_id = get_request_admin_id(request)
    try:
        entitlement = BillingAdminService(db).revoke_entitlement(
            entitlement_id, body.reason, admin_id
        )
    except EntitlementNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return _entitlement_response(entitlement)


@admin_router.post("/tenants/{tenant_id}/entitlements", response_model=EntitlementResponse)
def grant_entitlement(
    tenant_id: str,
    body: GrantEntitlementRequest,
    request: Request,
    db: Session = Depends(get_db_session),
):
    admin_id = get_request_admin_id(request)
    _require_aware(body.ends_at, "ends_at")
    try:
        entitlement = BillingAdminService(db).grant_entitlement(
            tenant_id,
            plan_code=body.plan_code,
            source=body.source,
            admin_id=admin_id,
            ends_at=body.ends_at,
            external_reference=body.external_reference,
        )
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _entitlement_response(entitlement)


@admin_router.post("/tenants/{tenant_id}/status", response_model=TenantStatusResponse)
def override_tenant_status(
    tenant_id: str,
    body: StatusOverrideRequest,
    request: Request,
    db: Session = Depends(get_db_session),
):
    admin_id = get_request_admin_id(request)
    _require_aware(body.grace_until, "grace_until")
    try:
        tenant = BillingAdminService(db).override_status(
            tenant_id,
            body.status,
            admin_id,
            grace_until=body.grace_until,
            reason=body.reason,
        )
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStatusTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return TenantStatusResponse(
        tenant_id=tenant.id,
        status=tenant.status,
        grace_until=tenant.grace_until,
    )


@admin_router.get("/tenants/{tenant_id}/audit-logs", response_model=List[AuditLogResponse])
def list_audit_logs(
    tenant_id: str,
    request: Request,
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db_session),
):
    """Billing audit trail for one tenant, oldest first. Read-only."""
    get_request_admin_id(request)
    try:
        rows = BillingAdminService(db).list_audit_logs(tenant_id, action=action, limit=limit)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return [
        AuditLogResponse(
            id=row.id,
            tenant_id=row.tenant_id,
            action=row.action,
            actor_type=row.actor_type,
            actor_id=row.actor_id,
            event_id=row.event_id,
            before_state=row.before_state,
            after_state=row.after_state,
            metadata=row.extra_metadata,
            created_at=row.created_at,
        )
        for row in rows
    ]
