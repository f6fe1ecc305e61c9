"""
Webhook Security Module

Signature verification for inbound payment webhooks:
- HMAC-SHA256 over the raw request body
- Constant-time signature comparison (prevents timing attacks)
- Fail closed: a missing secret or malformed signature is a failed verification
"""

import hashlib
import hmac
import logging
from typing import Union

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    try:
        return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
    except (AttributeError, TypeError):
        return False


def compute_hmac_sha256(secret: str, payload: Union[str, bytes]) -> str:
    """Compute HMAC-SHA256 signature of payload as a hex digest"""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class TeoriWebhookVerifier:
    """Verifies Teori-Signature headers against the configured webhook secret"""

    def __init__(self, resolver):
        self.resolver = resolver

    def verify(self, signature_header: str, raw_body: Union[str, bytes]) -> bool:
        """Never raises: any problem is logged and reported as an invalid signature"""
        try:
            settings = self.resolver.resolve()
        except Exception as e:
            logger.error(f"❌ Cannot verify Teori webhook, settings unavailable: {e}")
            return False

        if not settings.webhook_secret:
            logger.warning("⚠️ No webhook secret configured for Teori, rejecting webhook")
            return False

        if not signature_header or not isinstance(signature_header, str):
            logger.warning("🚫 Missing Teori webhook signature")
            return False

        provided = signature_header.strip()
        if provided.startswith(SIGNATURE_PREFIX):
            provided = provided[len(SIGNATURE_PREFIX):]

        try:
            expected = compute_hmac_sha256(settings.webhook_secret, raw_body)
        except (TypeError, UnicodeEncodeError) as e:
            logger.error(f"❌ Error computing Teori webhook signature: {e}")
            return False

        if constant_time_compare(expected, provided):
            return True

        logger.warning(f"🚫 Teori webhook signature mismatch (got {provided[:8]}...)")
        return False
