"""Tests for inbound signature verification."""

import hashlib
import hmac

from webhook_pipeline.models.database.connections import SignatureScheme
from webhook_pipeline.services.signatures import (
    compute_hmac,
    select_signature_header,
    verify,
)

BODY = b'{"event":"order.created","amount":10}'
SECRET = "abc123"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestHmacVerification:
    """HMAC-SHA256 over the raw body."""

    def test_valid_bare_hex(self):
        assert verify(BODY, SignatureScheme.HMAC_SHA256, SECRET, _sign(BODY)).valid

    def test_valid_with_sha256_prefix(self):
        assert verify(BODY, SignatureScheme.HMAC_SHA256, SECRET, "sha256=" + _sign(BODY)).valid

    def test_uppercase_digest_accepted(self):
        assert verify(BODY, SignatureScheme.HMAC_SHA256, SECRET, _sign(BODY).upper()).valid

    def test_tampered_body_rejected(self):
        result = verify(BODY + b" ", SignatureScheme.HMAC_SHA256, SECRET, _sign(BODY))
        assert not result.valid
        assert result.reason == "signature mismatch"

    def test_wrong_secret_rejected(self):
        assert not verify(BODY, SignatureScheme.HMAC_SHA256, "other", _sign(BODY)).valid

    def test_non_hex_digest_rejected(self):
        result = verify(BODY, SignatureScheme.HMAC_SHA256, SECRET, "sha256=not-hex")
        assert not result.valid
        assert result.reason == "malformed signature digest"

    def test_missing_header_fails_closed(self):
        result = verify(BODY, SignatureScheme.HMAC_SHA256, SECRET, None)
        assert not result.valid
        assert result.reason == "missing signature header"

    def test_missing_secret_fails_closed(self):
        assert not verify(BODY, SignatureScheme.HMAC_SHA256, None, _sign(BODY)).valid

    def test_compute_hmac_matches_stdlib(self):
        assert compute_hmac(SECRET, BODY) == _sign(BODY)


class TestTimestampedSignatures:
    """Stripe-style "t=<ts>,v1=<sig>" headers."""

    def _header(self, timestamp: int, body: bytes = BODY) -> str:
        signed = f"{timestamp}.".encode() + body
        return f"t={timestamp},v1={_sign(signed)}"

    def test_fresh_signature_accepted(self):
        header = self._header(1_700_000_000)
        assert verify(BODY, SignatureScheme.HMAC_SHA256, SECRET, header, now=1_700_000_100).valid

    def test_stale_signature_rejected(self):
        header = self._header(1_700_000_000)
        result = verify(
            BODY, SignatureScheme.HMAC_SHA256, SECRET, header,
            now=1_700_001_000, tolerance_seconds=300,
        )
        assert not result.valid
        assert result.reason == "signature timestamp outside tolerance"

    def test_malformed_header_rejected(self):
        result = verify(BODY, SignatureScheme.HMAC_SHA256, SECRET, "t=abc", now=0)
        assert not result.valid


class TestOtherSchemes:

    def test_shared_secret_match(self):
        assert verify(BODY, SignatureScheme.SHARED_SECRET, SECRET, SECRET).valid

    def test_shared_secret_mismatch(self):
        result = verify(BODY, SignatureScheme.SHARED_SECRET, SECRET, "abc124")
        assert not result.valid
        assert result.reason == "shared secret mismatch"

    def test_none_scheme_always_valid(self):
        assert verify(BODY, SignatureScheme.NONE, None, None).valid


class TestHeaderSelection:

    def test_default_hmac_headers_in_order(self):
        headers = {"x-hub-signature-256": "second", "x-signature-256": "first"}
        assert select_signature_header(headers, SignatureScheme.HMAC_SHA256) == "first"

    def test_override_header(self):
        headers = {"x-custom-sig": "abc", "x-signature-256": "other"}
        assert select_signature_header(headers, SignatureScheme.HMAC_SHA256, "x-custom-sig") == "abc"

    def test_shared_secret_header(self):
        headers = {"x-webhook-secret": "s3cret"}
        assert select_signature_header(headers, SignatureScheme.SHARED_SECRET) == "s3cret"

    def test_absent_header(self):
        assert select_signature_header({}, SignatureScheme.HMAC_SHA256) is None
