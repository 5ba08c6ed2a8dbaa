"""
Tests for webhook signature verification.
"""

import json
import time

import pytest

from conftest import WEBHOOK_SECRET, sign_payload
from shared.errors import SignatureInvalidError
from shared.signature import get_signature_header, verify_signature


class TestVerifySignature:
    """Tests for verify_signature."""

    def test_valid_signature_returns_payload_unchanged(self):
        """Should return the exact bytes that were verified."""
        payload = '{"id": "evt_1",   "type": "invoice.paid"}'
        header = sign_payload(payload)

        result = verify_signature(payload.encode("utf-8"), header, WEBHOOK_SECRET)

        assert result == payload.encode("utf-8")

    def test_tampered_payload_rejected(self):
        """Should reject a payload that differs from what was signed."""
        original = json.dumps({"id": "evt_1", "type": "invoice.paid"})
        header = sign_payload(original)
        tampered = json.dumps({"id": "evt_TAMPERED", "type": "invoice.paid"})

        with pytest.raises(SignatureInvalidError) as exc_info:
            verify_signature(tampered.encode("utf-8"), header, WEBHOOK_SECRET)

        assert exc_info.value.code == "invalid_signature"
        assert exc_info.value.status_code == 400

    def test_reserialized_payload_rejected(self):
        """Whitespace changes from re-encoding must break the signature."""
        compact = '{"id":"evt_1","type":"invoice.paid"}'
        header = sign_payload(compact)
        reencoded = json.dumps(json.loads(compact))  # adds spaces after separators

        assert reencoded != compact
        with pytest.raises(SignatureInvalidError):
            verify_signature(reencoded.encode("utf-8"), header, WEBHOOK_SECRET)

    def test_wrong_secret_rejected(self):
        """Should reject a payload signed with a different secret."""
        payload = json.dumps({"id": "evt_wrong"})
        header = sign_payload(payload, secret="whsec_WRONG_secret")

        with pytest.raises(SignatureInvalidError):
            verify_signature(payload.encode("utf-8"), header, WEBHOOK_SECRET)

    def test_expired_timestamp_rejected(self):
        """Should reject signatures older than the tolerance."""
        payload = json.dumps({"id": "evt_old"})
        header = sign_payload(payload, timestamp=int(time.time()) - 360)

        with pytest.raises(SignatureInvalidError):
            verify_signature(payload.encode("utf-8"), header, WEBHOOK_SECRET, tolerance=300)

    def test_custom_tolerance_accepts_older_signature(self):
        """A wider tolerance should accept the same signature."""
        payload = json.dumps({"id": "evt_old"})
        header = sign_payload(payload, timestamp=int(time.time()) - 360)

        assert verify_signature(payload.encode("utf-8"), header, WEBHOOK_SECRET, tolerance=600)

    def test_malformed_header_rejected(self):
        """Should reject a header without a timestamp."""
        with pytest.raises(SignatureInvalidError):
            verify_signature(b'{"id": "evt_1"}', "v1=abc123", WEBHOOK_SECRET)

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header_rejected(self, header):
        """Should reject when there is no signature at all."""
        with pytest.raises(SignatureInvalidError):
            verify_signature(b'{"id": "evt_1"}', header, WEBHOOK_SECRET)

    def test_non_utf8_body_rejected(self):
        """Bytes that are not UTF-8 cannot be a signed Stripe payload."""
        with pytest.raises(SignatureInvalidError):
            verify_signature(b"\xff\xfe\x00", "t=1,v1=abc", WEBHOOK_SECRET)


class TestGetSignatureHeader:
    """Tests for get_signature_header."""

    @pytest.mark.parametrize("name", ["Stripe-Signature", "stripe-signature", "STRIPE-SIGNATURE"])
    def test_finds_header_in_any_case(self, name):
        assert get_signature_header({name: "t=1,v1=abc"}) == "t=1,v1=abc"

    def test_returns_none_when_absent(self):
        assert get_signature_header({"Content-Type": "application/json"}) is None

    def test_handles_none_headers(self):
        assert get_signature_header(None) is None
