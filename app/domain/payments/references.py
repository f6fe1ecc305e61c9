"""Merchant reference and callback token helpers"""

import base64
import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)

# Teori accepts ^[A-Za-z0-9_-]{1,25}$
MAX_REFERENCE_LENGTH = 25
_DISALLOWED = re.compile(r"[^A-Za-z0-9_-]")

REFERENCE_PREFIXES = (
    ("teori", "teo"),
    ("handledar", "hdl"),
    ("session", "ses"),
    ("booking", "bok"),
)
DEFAULT_PREFIX = "ref"

BOOKING_REFERENCE_PREFIX = "teori_"

CALLBACK_TOKEN_BYTES = 24
CALLBACK_TOKEN_TTL = timedelta(hours=24)


def _prefix_for(cleaned: str) -> str:
    first_part = cleaned.split("_")[0].lower()
    for token, prefix in REFERENCE_PREFIXES:
        if first_part.startswith(token):
            return prefix
    return DEFAULT_PREFIX


def sanitize_merchant_reference(reference: str) -> str:
    """
    Map an internal reference to Teori's merchant reference format.

    Compliant references of at most 25 characters are kept as-is (minus disallowed
    characters). Anything else becomes "<prefix>_<hash>" where the hash is a URL-safe
    SHA-1 of the original input, so the same input always maps to the same reference.
    """
    reference = reference or ""
    cleaned = _DISALLOWED.sub("", reference)
    if 0 < len(cleaned) <= MAX_REFERENCE_LENGTH:
        return cleaned

    prefix = _prefix_for(cleaned)
    digest = base64.urlsafe_b64encode(hashlib.sha1(reference.encode("utf-8")).digest())
    digest_text = _DISALLOWED.sub("", digest.decode("ascii"))
    remaining = MAX_REFERENCE_LENGTH - (len(prefix) + 1)
    short_ref = f"{prefix}_{digest_text[:remaining]}"

    logger.debug(f"Sanitized merchant reference {reference!r} -> {short_ref!r}")
    return short_ref


def generate_callback_token(
    ttl: timedelta = CALLBACK_TOKEN_TTL, now: Optional[datetime] = None
) -> tuple[str, datetime]:
    """Per-order webhook token and its expiry (naive UTC, like the rest of the schema)"""
    token = secrets.token_hex(CALLBACK_TOKEN_BYTES)
    expires_at = (now or datetime.utcnow()) + ttl
    return token, expires_at


def booking_id_from_reference(reference: str) -> Optional[str]:
    """Teori booking id carried in a "teori_<id>" reference, if any"""
    if reference and reference.startswith(BOOKING_REFERENCE_PREFIX):
        return reference[len(BOOKING_REFERENCE_PREFIX):] or None
    return None
