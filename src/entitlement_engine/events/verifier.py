"""Stripe webhook signature verification and event decoding.

Stripe sends ``Stripe-Signature: t=<timestamp>,v1=<signature>[,v1=<signature>]``
where each signature is HMAC-SHA256 over ``"<timestamp>." + raw_body``. The
body must be verified exactly as received.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Optional

from entitlement_engine.common.exceptions import AuthenticationError
from entitlement_engine.events.schemas import PaymentEvent

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"


def parse_signature_header(signature_header: str) -> tuple[int, list[str]]:
    """Split a Stripe-Signature header into (timestamp, [v1 signatures]).

    Raises AuthenticationError if the header is empty or malformed.
    """
    if not signature_header:
        raise AuthenticationError("Missing signature header")

    timestamp = None
    signatures = []
    for item in signature_header.split(","):
        key, _, value = item.partition("=")
        key, value = key.strip(), value.strip()
        if key == "t":
            timestamp = value
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)

    if not timestamp or not signatures:
        raise AuthenticationError("Malformed signature header")
    try:
        return int(timestamp), signatures
    except ValueError:
        raise AuthenticationError("Malformed signature timestamp") from None


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes,
    signature_header: str,
    webhook_secret: str,
    tolerance: int = 300,
    now: Optional[float] = None,
) -> bool:
    """Verify a Stripe webhook signature against a single secret."""
    return verify_signature_multi(
        payload, signature_header, [webhook_secret], tolerance=tolerance, now=now
    )


def verify_signature_multi(
    payload: bytes,
    signature_header: str,
    webhook_secrets: list[str],
    tolerance: int = 300,
    now: Optional[float] = None,
) -> bool:
    """Verify against a secret ring (current first, then previous ones)."""
    try:
        _check_signature(payload, signature_header, webhook_secrets, tolerance, now)
    except AuthenticationError:
        return False
    return True


def _check_signature(
    payload: bytes,
    signature_header: str,
    webhook_secrets: list[str],
    tolerance: int,
    now: Optional[float],
) -> None:
    timestamp, signatures = parse_signature_header(signature_header)

    if tolerance > 0:
        current = time.time() if now is None else now
        if abs(current - timestamp) > tolerance:
            raise AuthenticationError("Signature timestamp outside tolerance")

    for secret in webhook_secrets:
        if not secret:
            continue
        expected = compute_signature(payload, timestamp, secret)
        if any(hmac.compare_digest(expected, sig) for sig in signatures):
            return

    raise AuthenticationError("No signature matches the configured webhook secrets")


def construct_event(
    payload: bytes,
    signature_header: str,
    webhook_secrets: list[str],
    tolerance: int = 300,
    now: Optional[float] = None,
) -> PaymentEvent:
    """Verify the raw body and decode it into a typed PaymentEvent.

    Raises AuthenticationError on any verification or decoding failure.
    """
    if not any(webhook_secrets):
        raise AuthenticationError("No webhook secret configured")

    _check_signature(payload, signature_header, webhook_secrets, tolerance, now)

    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise AuthenticationError("Webhook body is not valid JSON") from None
    if not isinstance(data, dict):
        raise AuthenticationError("Webhook body is not a JSON object")

    try:
        return PaymentEvent.from_payload(data)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Undecodable Stripe event: %s", exc)
        raise AuthenticationError("Webhook body is not a recognizable event") from exc
