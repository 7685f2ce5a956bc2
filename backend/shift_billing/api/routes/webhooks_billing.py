"""
Billing webhook endpoint.

SECURITY: The signature is verified against the raw body before the body
is parsed and before any ledger interaction. A rejected delivery leaves no
trace in the database.

Status codes:
- 200: processed, duplicate, or acknowledged-and-discarded
- 400: missing/malformed signature header, unparsable body
- 401: signature mismatch or timestamp outside tolerance
- 500: reconciliation failed and was rolled back; the provider retries
- 503: webhook secret not configured
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from shift_billing.config.billing_settings import get_billing_settings
from shift_billing.database.session import get_db_session
from shift_billing.services.billing_webhook_handler import get_webhook_handler
from shift_billing.services.webhook_events import InvalidEnvelopeError, WebhookEnvelope
from shift_billing.services.webhook_signature import (
    MalformedSignatureError,
    MissingSignatureError,
    WebhookSignatureError,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SIGNATURE_HEADERS = ("Billing-Signature", "Stripe-Signature")


class WebhookResponse(BaseModel):
    """Standard webhook response."""
    received: bool = True
    duplicate: bool = False
    message: str = "Webhook processed"
    skipped_reason: Optional[str] = None


def _signature_header(request: Request) -> Optional[str]:
    for name in SIGNATURE_HEADERS:
        value = request.headers.get(name)
        if value:
            return value
    return None


async def get_verified_envelope(request: Request) -> WebhookEnvelope:
    """
    Read, verify and parse the webhook body.

    Raises:
        HTTPException: If verification or parsing fails
    """
    settings = get_billing_settings()
    secret = settings.webhook_secret
    if not secret:
        logger.error("Billing webhook secret not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook verification not configured"
        )

    body = await request.body()

    try:
        verify_signature(
            body,
            _signature_header(request),
            secret,
            settings.signature_tolerance_seconds,
        )
    except (MissingSignatureError, MalformedSignatureError) as e:
        logger.warning("Rejected billing webhook with bad signature header", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except WebhookSignatureError as e:
        logger.warning("Invalid billing webhook signature", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        data = json.loads(body)
        return WebhookEnvelope.from_body(data, settings.webhook_provider)
    except json.JSONDecodeError:
        logger.error("Invalid JSON in billing webhook body")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON body"
        )
    except InvalidEnvelopeError as e:
        logger.warning("Invalid billing webhook envelope", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/billing", response_model=WebhookResponse)
async def handle_billing_webhook(
    request: Request,
    db: Session = Depends(get_db_session),
):
    """
    Receive a billing event from the payment processor.

    SECURITY: Verifies the signature before processing.
    """
    envelope = await get_verified_envelope(request)

    logger.info("Billing webhook received", extra={
        "provider": envelope.provider,
        "event_id": envelope.event_id,
        "event_type": envelope.event_type,
    })

    handler = get_webhook_handler(db)
    try:
        result = handler.handle(envelope)
    except Exception:
        # Handler already logged and rolled back; the provider will retry
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed"
        )

    return WebhookResponse(
        duplicate=result.duplicate,
        message=result.message,
        skipped_reason=result.skipped_reason,
    )
