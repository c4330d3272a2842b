"""
Webhook Security Module

Signature verification for carrier callbacks:
- HMAC-SHA256 over the raw request body, hex encoded
- Constant-time comparison
"""

import hashlib
import hmac
import logging
from typing import Optional

from .config import CARRIER_WEBHOOK_SECRET

logger = logging.getLogger(__name__)

CARRIER_SIGNATURE_HEADER = "X-Carrier-Signature"


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


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_carrier_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> None:
    """
    Verify the carrier's X-Carrier-Signature header.

    No-op when no secret is configured. Accepts a bare hex digest or one
    prefixed with "sha256=".
    """
    secret = secret or CARRIER_WEBHOOK_SECRET
    if not secret:
        return

    if not signature:
        logger.warning("🚫 Carrier webhook rejected: missing signature header")
        raise WebhookSignatureError("Missing carrier signature")

    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]

    expected = compute_hmac_sha256(secret, body)
    if not constant_time_compare(provided.lower(), expected):
        logger.warning("🚫 Carrier webhook rejected: signature mismatch")
        raise WebhookSignatureError("Invalid carrier signature")

    logger.debug("🔐 Carrier webhook signature verified")
