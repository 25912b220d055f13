"""Signature verification for Replicate webhooks.

Replicate signs deliveries with the Standard Webhooks scheme: an HMAC-SHA256
over ``"{webhook-id}.{webhook-timestamp}.{body}"`` keyed with the base64 part
of the ``whsec_`` secret. The ``webhook-signature`` header carries one or more
space-separated ``v1,<base64 signature>`` entries.
"""

import base64
import binascii
import hashlib
import hmac
import time
from typing import Optional

from mockup_queue.core.exceptions import InvalidWebhookSignature

SECRET_PREFIX = "whsec_"


def _signing_key(secret: str) -> bytes:
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    try:
        return base64.b64decode(secret)
    except (binascii.Error, ValueError):
        raise InvalidWebhookSignature("Webhook secret is not valid base64") from None


def compute_signature(secret: str, webhook_id: str, timestamp: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 signature of one delivery."""
    signed_content = f"{webhook_id}.{timestamp}.".encode("utf-8") + body
    digest = hmac.new(_signing_key(secret), signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    secret: str,
    body: bytes,
    webhook_id: Optional[str],
    timestamp: Optional[str],
    signature_header: Optional[str],
    tolerance: int = 300,
    now: Optional[float] = None,
) -> None:
    """Verify a webhook delivery.

    Args:
        secret: Signing secret (``whsec_...``)
        body: Raw request body, exactly as received
        webhook_id: ``webhook-id`` header
        timestamp: ``webhook-timestamp`` header (unix seconds)
        signature_header: ``webhook-signature`` header
        tolerance: Allowed clock skew in seconds
        now: Current unix time, for tests

    Raises:
        InvalidWebhookSignature: If headers are missing, the timestamp is
            outside the tolerance, or no signature matches
    """
    if not webhook_id or not timestamp or not signature_header:
        raise InvalidWebhookSignature("Missing webhook signature headers")

    try:
        sent_at = int(timestamp)
    except ValueError:
        raise InvalidWebhookSignature("Invalid webhook timestamp") from None

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance:
        raise InvalidWebhookSignature(
            "Webhook timestamp outside tolerance",
            {"timestamp": sent_at, "tolerance": tolerance},
        )

    expected = compute_signature(secret, webhook_id, timestamp, body)
    for entry in signature_header.split():
        version, _, signature = entry.partition(",")
        # Constant-time comparison
        if version == "v1" and hmac.compare_digest(expected, signature):
            return

    raise InvalidWebhookSignature("Invalid webhook signature")
