"""
test_signing.py — Secret generation and webhook signature tests.

Run with:
    pytest tests/test_signing.py -v
"""

from __future__ import annotations

import hashlib
import hmac
import json

import pytest

from backend.ewers.integrations.signing import (
    API_KEY_BYTES,
    WEBHOOK_SECRET_BYTES,
    generate_secret,
    serialize_payload,
    sign,
    verify,
)


class TestGenerateSecret:

    def test_api_key_length(self):
        key = generate_secret(API_KEY_BYTES)
        assert len(key) == 48
        int(key, 16)  # valid hex

    def test_webhook_secret_length(self):
        assert len(generate_secret(WEBHOOK_SECRET_BYTES)) == 32

    def test_values_are_unique(self):
        assert len({generate_secret(16) for _ in range(50)}) == 50

    @pytest.mark.parametrize("length", [0, -1])
    def test_rejects_non_positive_length(self, length):
        with pytest.raises(ValueError):
            generate_secret(length)


class TestSerializePayload:

    def test_key_order_does_not_matter(self):
        assert serialize_payload({"b": 1, "a": 2}) == serialize_payload({"a": 2, "b": 1})

    def test_compact_utf8(self):
        body = serialize_payload({"city": "Abuja", "note": "ọ̀wọ́"})
        assert body == '{"city":"Abuja","note":"ọ̀wọ́"}'.encode("utf-8")

    def test_round_trips_through_json(self):
        payload = {"event": "alert.created", "data": {"id": 7, "tags": ["flood"]}}
        assert json.loads(serialize_payload(payload)) == payload


class TestSignAndVerify:

    def test_matches_reference_hmac(self):
        body = b'{"event":"alert.created"}'
        expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        assert sign("s3cret", body) == expected

    def test_str_and_bytes_sign_identically(self):
        assert sign("k", "payload") == sign("k", b"payload")

    def test_verify_accepts_own_signature(self):
        body = serialize_payload({"a": 1})
        assert verify(body, sign("secret", body), "secret")

    def test_verify_tolerates_case_and_whitespace(self):
        body = b"x"
        assert verify(body, f"  {sign('secret', body).upper()} ", "secret")

    def test_verify_rejects_other_secret(self):
        body = b"x"
        assert not verify(body, sign("secret", body), "other")

    def test_verify_rejects_tampered_body(self):
        signature = sign("secret", b'{"amount":1}')
        assert not verify(b'{"amount":2}', signature, "secret")

    def test_verify_rejects_empty_signature(self):
        assert not verify(b"x", "", "secret")
