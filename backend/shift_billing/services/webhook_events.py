"""
Webhook envelope parsing.

Normalizes an inbound billing delivery into a WebhookEnvelope before any
database work happens, so a malformed body is rejected without touching
the ledger. Two body shapes are accepted:

- the processor's native event:   {"id", "type", "data": {"object": {...}}}
- the canonical envelope:         {"provider", "event_id", "event_type", "payload"}
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


class InvalidEnvelopeError(ValueError):
    """Raised when a webhook body cannot be turned into an envelope."""
    pass


class EventKind(enum.Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_ENDED = "subscription_ended"
    UNHANDLED = "unhandled"


EVENT_KIND_BY_TYPE = {
    "checkout.session.completed": EventKind.CHECKOUT_COMPLETED,
    "checkout.completed": EventKind.CHECKOUT_COMPLETED,
    "invoice.paid": EventKind.PAYMENT_SUCCEEDED,
    "invoice.payment_succeeded": EventKind.PAYMENT_SUCCEEDED,
    "payment.succeeded": EventKind.PAYMENT_SUCCEEDED,
    "invoice.payment_failed": EventKind.PAYMENT_FAILED,
    "payment.failed": EventKind.PAYMENT_FAILED,
    "customer.subscription.updated": EventKind.SUBSCRIPTION_UPDATED,
    "subscription.updated": EventKind.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": EventKind.SUBSCRIPTION_ENDED,
    "subscription.ended": EventKind.SUBSCRIPTION_ENDED,
}

# Event kinds whose object is the subscription itself (its id is the subscription id)
_SUBSCRIPTION_OBJECT_KINDS = {
    EventKind.SUBSCRIPTION_UPDATED,
    EventKind.SUBSCRIPTION_ENDED,
}


def event_kind_for(event_type: str) -> EventKind:
    return EVENT_KIND_BY_TYPE.get(event_type, EventKind.UNHANDLED)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a processor timestamp into an aware UTC datetime.

    Accepts unix seconds (int, float or digit string) and ISO-8601 strings.

    Raises:
        InvalidEnvelopeError: value is present but not a timestamp
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidEnvelopeError(f"Invalid timestamp: {value!r}")
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if isinstance(value, str):
            if value.strip().lstrip("-").isdigit():
                return datetime.fromtimestamp(int(value), tz=timezone.utc)
            parsed = date_parser.isoparse(value)
            if parsed.tzinfo is None:
                return parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError, OSError) as e:
        raise InvalidEnvelopeError(f"Invalid timestamp: {value!r}") from e
    raise InvalidEnvelopeError(f"Invalid timestamp: {value!r}")


def _ref(value: Any) -> Optional[str]:
    """Processor references arrive either as an id string or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    if value is None or value == "":
        return None
    return str(value)


def _as_object(value: Any, name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidEnvelopeError(f"{name} must be an object")
    return value


def _extract_period_end(obj: Dict[str, Any]) -> Optional[datetime]:
    for key in ("current_period_end", "period_end"):
        if obj.get(key) is not None:
            return parse_timestamp(obj[key])

    subscription = obj.get("subscription")
    if isinstance(subscription, dict) and subscription.get("current_period_end") is not None:
        return parse_timestamp(subscription["current_period_end"])

    lines = _as_object(obj.get("lines"), "lines").get("data") or []
    if not isinstance(lines, list):
        raise InvalidEnvelopeError("lines.data must be a list")
    if lines:
        period = _as_object(_as_object(lines[0], "line item").get("period"), "line period")
        if period.get("end") is not None:
            return parse_timestamp(period["end"])

    metadata = _as_object(obj.get("metadata"), "metadata")
    if metadata.get("period_end") is not None:
        return parse_timestamp(metadata["period_end"])
    return None


@dataclass(frozen=True)
class BillingEventData:
    """Fields the reconciler reads from an event object."""
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    period_end: Optional[datetime] = None
    checkout_session_id: Optional[str] = None
    checkout_mode: Optional[str] = None
    tenant_reference: Optional[str] = None
    plan_code: Optional[str] = None
    cancel_at_period_end: Optional[bool] = None
    cancel_at: Optional[datetime] = None
    attempt_count: Optional[int] = None


def parse_event_data(kind: EventKind, obj: Dict[str, Any]) -> BillingEventData:
    """
    Pull the reconciler's fields out of an event object.

    Raises:
        InvalidEnvelopeError: a timestamp field is malformed
    """
    if kind == EventKind.UNHANDLED:
        return BillingEventData()

    metadata = _as_object(obj.get("metadata"), "metadata")

    if kind in _SUBSCRIPTION_OBJECT_KINDS:
        subscription_id = _ref(obj.get("id")) or _ref(obj.get("subscription"))
    else:
        subscription_id = _ref(obj.get("subscription"))

    checkout_session_id = None
    checkout_mode = None
    if kind == EventKind.CHECKOUT_COMPLETED:
        checkout_session_id = _ref(obj.get("id"))
        checkout_mode = obj.get("mode", "subscription")

    cancel_at_period_end = obj.get("cancel_at_period_end")
    if cancel_at_period_end is not None:
        cancel_at_period_end = bool(cancel_at_period_end)

    attempt_count = obj.get("attempt_count")
    if not isinstance(attempt_count, int) or isinstance(attempt_count, bool):
        attempt_count = None

    return BillingEventData(
        external_subscription_id=subscription_id,
        external_customer_id=_ref(obj.get("customer")),
        period_end=_extract_period_end(obj),
        checkout_session_id=checkout_session_id,
        checkout_mode=checkout_mode,
        tenant_reference=metadata.get("tenant_id") or obj.get("client_reference_id"),
        plan_code=metadata.get("plan_code"),
        cancel_at_period_end=cancel_at_period_end,
        cancel_at=parse_timestamp(obj.get("cancel_at")),
        attempt_count=attempt_count,
    )


@dataclass(frozen=True)
class WebhookEnvelope:
    """
    A verified delivery, ready for the ledger and the reconciler.

    payload is the event object the reconciler reads; raw_body is the whole
    decoded request body and is what the ledger keeps as its snapshot.
    """
    provider: str
    event_id: str
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    data: BillingEventData = field(default_factory=BillingEventData)
    raw_body: Optional[Dict[str, Any]] = None

    @property
    def kind(self) -> EventKind:
        return event_kind_for(self.event_type)

    @property
    def snapshot(self) -> Dict[str, Any]:
        return self.raw_body if self.raw_body is not None else self.payload

    @classmethod
    def build(
        cls,
        provider: str,
        event_id: str,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        raw_body: Optional[Dict[str, Any]] = None,
    ) -> "WebhookEnvelope":
        if not provider or not event_id or not event_type:
            raise InvalidEnvelopeError("provider, event_id and event_type are required")
        payload = _as_object(payload, "payload")
        return cls(
            provider=provider,
            event_id=str(event_id),
            event_type=str(event_type),
            payload=payload,
            data=parse_event_data(event_kind_for(str(event_type)), payload),
            raw_body=raw_body,
        )

    @classmethod
    def from_body(cls, body: Dict[str, Any], default_provider: str) -> "WebhookEnvelope":
        """
        Build an envelope from a decoded request body.

        Raises:
            InvalidEnvelopeError: required fields missing or malformed
        """
        if not isinstance(body, dict):
            raise InvalidEnvelopeError("Webhook body must be a JSON object")

        if "event_id" in body:
            return cls.build(
                provider=body.get("provider") or default_provider,
                event_id=body.get("event_id"),
                event_type=body.get("event_type"),
                payload=body.get("payload"),
                raw_body=body,
            )

        obj = _as_object(body.get("data"), "data").get("object")
        return cls.build(
            provider=default_provider,
            event_id=body.get("id"),
            event_type=body.get("type"),
            payload=obj,
            raw_body=body,
        )
