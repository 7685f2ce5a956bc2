#!/usr/bin/env python3
"""
Script to exercise the billing webhook endpoint locally.

Usage:
    # Start your server and seed a pending tenant first
    python backend/scripts/init_db.py --tenant T1 --checkout-session cs_local_test
    uvicorn main:app --reload

    # Then run this script
    python backend/scripts/send_webhook.py --event checkout_completed
    python backend/scripts/send_webhook.py --event subscription_ended
    python backend/scripts/send_webhook.py --event all
"""

import argparse
import json
import os
import sys
import time
import uuid
from pathlib import Path

import httpx

backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from shift_billing.services.webhook_signature import build_signature_header

DEFAULT_SECRET = os.getenv("BILLING_WEBHOOK_SECRET", "whsec_local_test")
DEFAULT_BASE_URL = os.getenv("TEST_BASE_URL", "http://localhost:8000")
WEBHOOK_PATH = "/api/webhooks/billing"

SUBSCRIPTION_ID = "sub_local_test"
CUSTOMER_ID = "cus_local_test"
CHECKOUT_SESSION_ID = "cs_local_test"


def _event(event_type: str, obj: dict) -> dict:
    return {
        "id": f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def _period_end(days: int = 30) -> int:
    return int(time.time()) + days * 86400


def send_webhook(body: dict, secret: str = None, signature: str = None):
    """Sign and send one event to the local server."""
    url = f"{DEFAULT_BASE_URL}{WEBHOOK_PATH}"
    payload_bytes = json.dumps(body).encode("utf-8")
    header = signature or build_signature_header(payload_bytes, secret or DEFAULT_SECRET)

    headers = {
        "Content-Type": "application/json",
        "Billing-Signature": header,
    }

    print(f"\n{'='*60}")
    print(f"Sending webhook: {body.get('type')} ({body.get('id')})")
    print(f"URL: {url}")
    print(f"Payload: {json.dumps(body, indent=2)}")
    print(f"{'='*60}\n")

    try:
        response = httpx.post(url, content=payload_bytes, headers=headers)
        print(f"Response Status: {response.status_code}")
        print(f"Response Body: {response.text}")
        return response
    except httpx.HTTPError as e:
        print(f"Error: {e}")
        return None


def send_checkout_completed():
    return send_webhook(_event("checkout.session.completed", {
        "id": CHECKOUT_SESSION_ID,
        "object": "checkout.session",
        "mode": "subscription",
        "customer": CUSTOMER_ID,
        "subscription": SUBSCRIPTION_ID,
        "current_period_end": _period_end(),
        "metadata": {"plan_code": "team"},
    }))


def send_payment_succeeded():
    end = _period_end(60)
    return send_webhook(_event("invoice.paid", {
        "object": "invoice",
        "customer": CUSTOMER_ID,
        "subscription": SUBSCRIPTION_ID,
        "lines": {"data": [{"period": {"start": end - 30 * 86400, "end": end}}]},
    }))


def send_payment_failed():
    return send_webhook(_event("invoice.payment_failed", {
        "object": "invoice",
        "customer": CUSTOMER_ID,
        "subscription": SUBSCRIPTION_ID,
        "attempt_count": 1,
    }))


def send_cancel_at_period_end():
    return send_webhook(_event("customer.subscription.updated", {
        "id": SUBSCRIPTION_ID,
        "object": "subscription",
        "customer": CUSTOMER_ID,
        "cancel_at_period_end": True,
    }))


def send_subscription_ended():
    return send_webhook(_event("customer.subscription.deleted", {
        "id": SUBSCRIPTION_ID,
        "object": "subscription",
        "customer": CUSTOMER_ID,
        "status": "canceled",
        "current_period_end": _period_end(0),
    }))


def send_replay():
    """Send the same event twice; the second response must report duplicate."""
    body = _event("invoice.payment_failed", {
        "object": "invoice",
        "subscription": SUBSCRIPTION_ID,
    })
    send_webhook(body)
    response = send_webhook(body)
    if response is not None and response.json().get("duplicate"):
        print("\n✓ Replay acknowledged as duplicate")
    else:
        print("\n✗ WARNING: Replay was NOT recognized as duplicate!")
    return response


def send_invalid_signature():
    print("\nTesting INVALID signature (should be rejected)")
    response = send_webhook(
        _event("invoice.paid", {"subscription": SUBSCRIPTION_ID}),
        signature=f"t={int(time.time())},v1=invalid_signature_here",
    )
    if response is not None and response.status_code == 401:
        print("\n✓ Correctly rejected invalid signature!")
    else:
        print("\n✗ WARNING: Invalid signature was NOT rejected!")
    return response


EVENTS = {
    "checkout_completed": send_checkout_completed,
    "payment_succeeded": send_payment_succeeded,
    "payment_failed": send_payment_failed,
    "cancel_at_period_end": send_cancel_at_period_end,
    "subscription_ended": send_subscription_ended,
    "replay": send_replay,
    "invalid_signature": send_invalid_signature,
    "all": None,  # Special case
}


def main():
    global DEFAULT_SECRET, DEFAULT_BASE_URL

    parser = argparse.ArgumentParser(description="Send billing webhooks to a local server")
    parser.add_argument(
        "--event",
        choices=list(EVENTS.keys()),
        default="all",
        help="Which event to send (default: all, in lifecycle order)"
    )
    parser.add_argument(
        "--secret",
        default=DEFAULT_SECRET,
        help="Webhook secret (default: BILLING_WEBHOOK_SECRET env var or 'whsec_local_test')"
    )
    parser.add_argument(
        "--base-url",
        default=DEFAULT_BASE_URL,
        help="Base URL of your server (default: http://localhost:8000)"
    )

    args = parser.parse_args()

    DEFAULT_SECRET = args.secret
    DEFAULT_BASE_URL = args.base_url

    if args.event == "all":
        print("\n" + "="*60)
        print("Running full billing lifecycle")
        print("="*60)
        for name, func in EVENTS.items():
            if func is not None:
                func()
    else:
        EVENTS[args.event]()


if __name__ == "__main__":
    main()
