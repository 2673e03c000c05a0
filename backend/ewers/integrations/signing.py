"""
signing.py — Secret generation and HMAC-SHA256 webhook signatures.

Receivers verify a delivery by recomputing HMAC-SHA256 over the raw
request body with their shared secret and comparing it against the
``X-EWERS-Webhook-Signature`` header. The signature is therefore always
computed over the exact bytes that are transmitted: callers serialize the
payload once with :func:`serialize_payload` and pass the same bytes to both
:func:`sign` and the HTTP client.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from typing import Any, Union

API_KEY_BYTES = 24         # 48 hex chars
WEBHOOK_SECRET_BYTES = 16  # 32 hex chars

Payload = Union[bytes, str]


def generate_secret(byte_length: int) -> str:
    """Return ``byte_length`` cryptographically random bytes as hex."""
    if byte_length <= 0:
        raise ValueError("byte_length must be positive")
    return secrets.token_hex(byte_length)


def serialize_payload(payload: Any) -> bytes:
    """Canonical JSON encoding: sorted keys, compact separators, UTF-8."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")


def _as_bytes(payload: Payload) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload


def sign(secret: str, payload: Payload) -> str:
    """HMAC-SHA256 hex digest of ``payload`` keyed with ``secret``."""
    return hmac.new(
        secret.encode("utf-8"), _as_bytes(payload), hashlib.sha256
    ).hexdigest()


def verify(payload: Payload, signature: str, secret: str) -> bool:
    """Constant-time check that ``signature`` matches ``payload``."""
    if not signature:
        return False
    expected = sign(secret, payload)
    return hmac.compare_digest(expected, signature.strip().lower())
