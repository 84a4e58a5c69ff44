"""
Utility functions shared by ingestion and queries.
"""

import hmac
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

GROUP_SUFFIX = "@g.us"
USER_SERVER = "s.whatsapp.net"
LID_SERVER = "lid"


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Args:
        body: Raw request body bytes
        signature: Hex-encoded signature from X-Signature header
        secret: WEBHOOK_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying HMAC signature, body length: {len(body)} bytes")

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.info(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def local_part(jid: str) -> str:
    """Return the part of a JID before the first '@' (the JID itself if there is none)."""
    idx = jid.find("@")
    return jid[:idx] if idx > 0 else jid


def is_group_jid(jid: str) -> bool:
    return jid.endswith(GROUP_SUFFIX)


def to_utc_naive(ts: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a timestamp to naive UTC, the form stored in the archive.
    Naive inputs are assumed to already be UTC.
    """
    if ts is None or ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def from_unix(seconds: int) -> datetime:
    """Convert a protocol unix timestamp (seconds) to naive UTC."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
