"""
Webhook authenticity checks for SmartSuite ingress.

- HMAC-SHA256 over the raw body, hex encoded, optional "sha256=" prefix
- Timestamp freshness window (replay protection)
- Deterministic idempotency keys
"""
import hashlib
import hmac
import logging
import time
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
DEFAULT_MAX_AGE_SECONDS = 300
DEFAULT_MAX_FUTURE_SKEW_SECONDS = 30

# Values above this are unix milliseconds (1e11 seconds is year 5138)
_SECONDS_CEILING = 1e11


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw body. Used by senders and tests."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, signature: Optional[str], body: bytes) -> bool:
    """
    Validate an HMAC-SHA256 webhook signature in constant time.
    A length or value mismatch returns False.
    """
    if not secret or not signature:
        return False

    sig = signature.strip()
    if sig.startswith(SIGNATURE_PREFIX):
        sig = sig[len(SIGNATURE_PREFIX):]

    expected = compute_signature(secret, body)
    if len(sig) != len(expected):
        return False
    return hmac.compare_digest(expected.encode(), sig.lower().encode())


def parse_timestamp(timestamp: Union[str, int, float]) -> Optional[float]:
    """Parse a unix timestamp (seconds or milliseconds) into seconds."""
    try:
        ts = float(timestamp)
    except (TypeError, ValueError):
        return None
    if ts > _SECONDS_CEILING:
        ts = ts / 1000.0
    return ts


def verify_timestamp(
    timestamp: Union[str, int, float],
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    max_future_skew_seconds: int = DEFAULT_MAX_FUTURE_SKEW_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """
    Reject timestamps older than max_age_seconds or more than
    max_future_skew_seconds ahead of the current time.
    """
    ts = parse_timestamp(timestamp)
    if ts is None:
        return False

    current = time.time() if now is None else now
    age = current - ts
    if age > max_age_seconds:
        return False
    if age < -max_future_skew_seconds:
        return False
    return True


def compute_payload_hash(body: bytes) -> str:
    """Compute SHA-256 hash of raw payload for dedup and audit."""
    return hashlib.sha256(body).hexdigest()


def derive_idempotency_key(
    connection_id: str,
    external_id: str,
    timestamp: Optional[str] = None,
    supplied_key: Optional[str] = None,
) -> str:
    """
    Use the caller-supplied key when present, otherwise
    sha256("<connection_id>-<external_id>-<timestamp or now-ms>").
    """
    if supplied_key:
        return supplied_key
    stamp = timestamp or str(int(time.time() * 1000))
    raw = f"{connection_id}-{external_id}-{stamp}"
    return hashlib.sha256(raw.encode()).hexdigest()
