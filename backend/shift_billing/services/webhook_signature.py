"""
Webhook signature verification.

Header format: "t=<unix seconds>,v1=<hex>[,v1=<hex>...]". The expected
signature is HMAC-SHA256 over "<t>.<raw body>" keyed with the shared
webhook secret. Several v1 entries may be present during secret rotation;
any match is accepted.
"""

import hashlib
import hmac
import logging
import time
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"


class WebhookSignatureError(Exception):
    """Base class for signature verification failures."""
    pass


class MissingSignatureError(WebhookSignatureError):
    pass


class MalformedSignatureError(WebhookSignatureError):
    pass


class SignatureExpiredError(WebhookSignatureError):
    pass


class SignatureMismatchError(WebhookSignatureError):
    pass


def parse_signature_header(header: str) -> Tuple[int, List[str]]:
    """
    Split a signature header into its timestamp and v1 signatures.

    Raises:
        MalformedSignatureError: no timestamp, bad timestamp, or no v1 entry
    """
    timestamp: Optional[int] = None
    signatures: List[str] = []

    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise MalformedSignatureError("Signature timestamp is not an integer")
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)

    if timestamp is None:
        raise MalformedSignatureError("Signature header has no timestamp")
    if not signatures:
        raise MalformedSignatureError(f"Signature header has no {SIGNATURE_SCHEME} signature")
    return timestamp, signatures


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Produce a header value for `payload` (used by tests and local tooling)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},{SIGNATURE_SCHEME}={compute_signature(payload, timestamp, secret)}"


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance_seconds: int,
    now: Optional[float] = None,
) -> int:
    """
    Verify a webhook signature header against the raw request body.

    Args:
        payload: Raw request body bytes
        header: Signature header value
        secret: Shared webhook secret
        tolerance_seconds: Maximum allowed age of the signed timestamp
        now: Current unix time (injected for tests)

    Returns:
        The verified signature timestamp

    Raises:
        MissingSignatureError, MalformedSignatureError,
        SignatureExpiredError, SignatureMismatchError
    """
    if not header:
        raise MissingSignatureError("Missing signature header")

    timestamp, signatures = parse_signature_header(header)

    now = time.time() if now is None else now
    if tolerance_seconds > 0 and abs(now - timestamp) > tolerance_seconds:
        raise SignatureExpiredError("Signature timestamp outside tolerance window")

    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise SignatureMismatchError("Signature does not match payload")

    return timestamp
