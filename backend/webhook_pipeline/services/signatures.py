"""
Inbound webhook signature verification.
"""
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Mapping, Optional

from webhook_pipeline.core.config import settings
from webhook_pipeline.models.database.connections import SignatureScheme

# Header names checked, in order, when a connection does not override them
HMAC_HEADERS = (
    "x-signature-256",
    "x-webhook-signature",
    "x-hub-signature-256",
    "stripe-signature",
)
SHARED_SECRET_HEADERS = ("x-webhook-secret",)

_DIGEST_PREFIXES = ("sha256=", "v1=")


@dataclass
class VerificationResult:
    valid: bool
    reason: Optional[str] = None


def select_signature_header(
    headers: Mapping[str, str],
    scheme: SignatureScheme,
    override: Optional[str] = None,
) -> Optional[str]:
    """
    Pick the header value carrying the signature for a scheme.

    Args:
        headers: Request headers (case-insensitive mapping)
        scheme: Connection signature scheme
        override: Connection-specific header name

    Returns:
        Header value, or None if absent
    """
    if override:
        return headers.get(override)

    candidates = SHARED_SECRET_HEADERS if scheme == SignatureScheme.SHARED_SECRET else HMAC_HEADERS
    for name in candidates:
        value = headers.get(name)
        if value:
            return value
    return None


def _is_hex(value: str) -> bool:
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True


def _strip_prefix(signature: str) -> str:
    lowered = signature.lower()
    for prefix in _DIGEST_PREFIXES:
        if lowered.startswith(prefix):
            return signature[len(prefix):]
    return signature


def _parse_timestamped(header_value: str) -> Optional[tuple]:
    """Parse a "t=<ts>,v1=<sig>" header into (timestamp, [signatures])."""
    timestamp = None
    signatures = []
    for part in header_value.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            return None
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        return None
    return timestamp, signatures


def compute_hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _verify_hmac(body: bytes, secret: str, header_value: str, now: float, tolerance: int) -> VerificationResult:
    header_value = header_value.strip()

    if header_value.startswith("t="):
        parsed = _parse_timestamped(header_value)
        if parsed is None:
            return VerificationResult(False, "malformed timestamped signature")
        timestamp, signatures = parsed
        try:
            ts = int(timestamp)
        except ValueError:
            return VerificationResult(False, "malformed signature timestamp")
        if abs(now - ts) > tolerance:
            return VerificationResult(False, "signature timestamp outside tolerance")

        expected = compute_hmac(secret, timestamp.encode("utf-8") + b"." + body)
        for candidate in signatures:
            if _is_hex(candidate) and hmac.compare_digest(candidate.lower(), expected):
                return VerificationResult(True)
        return VerificationResult(False, "signature mismatch")

    provided = _strip_prefix(header_value)
    if not provided or not _is_hex(provided):
        return VerificationResult(False, "malformed signature digest")

    expected = compute_hmac(secret, body)
    if hmac.compare_digest(provided.lower(), expected):
        return VerificationResult(True)
    return VerificationResult(False, "signature mismatch")


def verify(
    body: bytes,
    scheme: SignatureScheme,
    secret: Optional[str],
    header_value: Optional[str],
    now: Optional[float] = None,
    tolerance_seconds: Optional[int] = None,
) -> VerificationResult:
    """
    Verify a delivery against its connection's signing configuration.

    Fails closed: any missing or malformed input is a failure with a reason.

    Args:
        body: Raw request body exactly as received
        scheme: Connection signature scheme
        secret: Connection signing secret
        header_value: Value of the signature header
        now: Current unix time (for timestamped signatures)
        tolerance_seconds: Maximum accepted signature age

    Returns:
        VerificationResult
    """
    if scheme == SignatureScheme.NONE:
        return VerificationResult(True)

    if not secret:
        return VerificationResult(False, "connection has no signing secret")
    if not header_value:
        return VerificationResult(False, "missing signature header")

    if scheme == SignatureScheme.SHARED_SECRET:
        if hmac.compare_digest(header_value.encode("utf-8"), secret.encode("utf-8")):
            return VerificationResult(True)
        return VerificationResult(False, "shared secret mismatch")

    if scheme == SignatureScheme.HMAC_SHA256:
        return _verify_hmac(
            body,
            secret,
            header_value,
            now if now is not None else time.time(),
            tolerance_seconds if tolerance_seconds is not None else settings.SIGNATURE_TOLERANCE_SECONDS,
        )

    return VerificationResult(False, f"unsupported signature scheme: {scheme}")
