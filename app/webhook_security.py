"""
Webhook Security Module

Signature verification for payment gateway webhooks (Standard Webhooks, as
sent by Dodo Payments):

- signed message is ``webhook-id.webhook-timestamp.raw_body``
- key is the base64 part of the ``whsec_`` secret
- ``webhook-signature`` holds one or more space separated ``v1,<base64>`` entries
- timestamps outside the tolerance window are rejected as replays

Verification happens before the body is parsed or the database is touched.
"""

import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Mapping
from typing import Optional

from fastapi import HTTPException, Request

from .config import WEBHOOK_MAX_AGE_SECONDS

logger = logging.getLogger(__name__)

SIGNATURE_VERSION = "v1"


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""

    pass


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def extract_signing_key(secret: str) -> bytes:
    """
    Signing key bytes from a ``whsec_BASE64KEY`` secret.

    Unprefixed secrets are base64-decoded too; if that fails the raw UTF-8
    bytes are used.
    """
    raw = secret[6:] if secret.startswith("whsec_") else secret
    try:
        return base64.b64decode(raw, validate=True)
    except ValueError:
        return secret.encode("utf-8")


def compute_signature(secret: str, webhook_id: str, timestamp: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 over ``id.timestamp.body``"""
    signed_message = b".".join([webhook_id.encode("utf-8"), timestamp.encode("utf-8"), body])
    digest = hmac.new(extract_signing_key(secret), signed_message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_timestamp(timestamp: str, max_age: int = WEBHOOK_MAX_AGE_SECONDS, now: Optional[int] = None) -> None:
    """Reject timestamps that are unparseable or too far from ``now`` (either direction)"""
    try:
        webhook_time = int(timestamp)
    except (TypeError, ValueError):
        raise WebhookSignatureError(f"Invalid webhook timestamp format: {timestamp!r}") from None

    current_time = int(time.time()) if now is None else now
    age = abs(current_time - webhook_time)
    if age > max_age:
        raise WebhookSignatureError(f"Webhook timestamp outside tolerance: {age}s (max: {max_age}s)")


def verify_webhook_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: Optional[str],
    max_age: int = WEBHOOK_MAX_AGE_SECONDS,
    now: Optional[int] = None,
) -> str:
    """
    Verify a Standard Webhooks request.

    Args:
        raw_body: Request body exactly as received
        headers: Request headers (case-insensitive mapping, or lower-case keys)
        secret: Shared ``whsec_`` secret
        max_age: Timestamp tolerance in seconds
        now: Current unix time override

    Returns:
        The webhook id

    Raises:
        WebhookSignatureError: on any missing header, stale timestamp or mismatch
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")

    webhook_id = headers.get("webhook-id", "")
    timestamp = headers.get("webhook-timestamp", "")
    signature_header = headers.get("webhook-signature", "")

    if not webhook_id:
        raise WebhookSignatureError("Missing webhook-id header")
    if not timestamp:
        raise WebhookSignatureError("Missing webhook-timestamp header")
    if not signature_header:
        raise WebhookSignatureError("Missing webhook-signature header")

    verify_timestamp(timestamp, max_age=max_age, now=now)

    expected = compute_signature(secret, webhook_id, timestamp, raw_body)
    for entry in signature_header.split():
        version, _, received = entry.partition(",")
        if version == SIGNATURE_VERSION and constant_time_compare(expected, received):
            return webhook_id

    raise WebhookSignatureError(f"Signature mismatch for webhook {webhook_id}")


async def verify_payment_webhook(request: Request, secret: Optional[str]) -> bytes:
    """
    Verify the incoming payment webhook and return its raw body.

    Raises HTTPException(401) on failure and logs it as a security event.
    """
    # Raw body BEFORE any parsing; the signature covers these exact bytes
    raw_body = await request.body()

    try:
        webhook_id = verify_webhook_signature(raw_body, request.headers, secret)
    except WebhookSignatureError as e:
        client_host = request.client.host if request.client else "unknown"
        logger.warning(f"🚫 Rejected payment webhook from {client_host}: {e}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature") from e

    logger.info(f"✅ Payment webhook signature verified: {webhook_id}")
    return raw_body
