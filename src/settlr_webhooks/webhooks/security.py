"""Webhook security utilities.

Provides HMAC signature generation and verification for webhook payloads
to ensure authenticity and prevent tampering. The signature covers the exact
body bytes; merchants verify against the raw request body they received.
"""

import hashlib
import hmac
from collections.abc import Mapping

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Settlr-Signature"
EVENT_HEADER = "X-Settlr-Event"
DELIVERY_HEADER = "X-Settlr-Delivery"
TIMESTAMP_HEADER = "X-Settlr-Timestamp"

DEFAULT_USER_AGENT = "Settlr-Webhooks/1.0"


def sign(payload: str, secret: str) -> str:
    """Generate HMAC-SHA256 signature for a webhook payload.

    Args:
        payload: Serialized payload, exactly as sent.
        secret: Subscription secret.

    Returns:
        Lowercase hex digest (64 characters).
    """
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify(payload: str, signature: str, secret: str) -> bool:
    """Verify HMAC-SHA256 signature of a webhook payload.

    Never raises: malformed input (wrong length, non-ASCII signature, text
    that cannot be UTF-8 encoded, wrong type) is reported as invalid.

    Args:
        payload: Received payload string.
        signature: Claimed signature to verify.
        secret: Subscription secret.

    Returns:
        True if signature is valid, False otherwise.
    """
    if not isinstance(payload, str) or not isinstance(signature, str):
        return False
    if not isinstance(secret, str):
        return False

    try:
        expected = sign(payload, secret)
        # Constant-time comparison to prevent timing attacks
        is_valid = hmac.compare_digest(signature.encode("ascii"), expected.encode("ascii"))
    except UnicodeError:
        is_valid = False

    if not is_valid:
        logger.debug("webhook_signature_invalid", payload_length=len(payload))

    return is_valid


def build_delivery_headers(
    payload: str,
    secret: str,
    *,
    event_type: str,
    delivery_id: str,
    timestamp: str,
    user_agent: str = DEFAULT_USER_AGENT,
) -> dict[str, str]:
    """Create HTTP headers for a webhook delivery.

    Args:
        payload: Serialized payload being sent.
        secret: Subscription secret.
        event_type: Event type string.
        delivery_id: Delivery identifier.
        timestamp: Event creation time (ISO-8601).
        user_agent: Client identifier.

    Returns:
        Dictionary of headers to include in the request.
    """
    return {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: sign(payload, secret),
        EVENT_HEADER: event_type,
        DELIVERY_HEADER: delivery_id,
        TIMESTAMP_HEADER: timestamp,
        "User-Agent": user_agent,
    }


def verify_from_headers(
    payload: str,
    headers: Mapping[str, str],
    secret: str,
) -> bool:
    """Verify a received webhook using its request headers.

    Header lookup is case-insensitive. A missing signature header is an
    invalid request, not an error.

    Args:
        payload: Raw request body.
        headers: Request headers.
        secret: Subscription secret.

    Returns:
        True if signature is valid.
    """
    wanted = SIGNATURE_HEADER.lower()
    signature = next(
        (value for key, value in headers.items() if key.lower() == wanted),
        None,
    )
    if not signature:
        logger.warning("webhook_signature_missing")
        return False
    return verify(payload, signature, secret)
