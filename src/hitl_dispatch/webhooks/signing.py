"""Webhook 签名：HMAC-SHA256 负载签名与校验。

Payload signing for webhook deliveries.

The signature is ``sha256=`` followed by the hex HMAC-SHA256 of
``"{timestamp_ms}.{body}"``. Receivers recompute it from the raw request
body and the ``X-Timestamp`` header.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

SIGNATURE_PREFIX = "sha256="


def encode_payload(payload: Any) -> str:
    """Serialize a payload to the exact JSON string that is signed and sent.

    Strings pass through unchanged.
    """
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def sign_payload(payload: Any, secret: str, timestamp: int) -> str:
    """Sign a payload.

    Args:
        payload: JSON-serializable payload or an already encoded body
        secret: Webhook secret
        timestamp: Epoch milliseconds sent as ``X-Timestamp``

    Returns:
        Signature in ``sha256=<hex>`` form
    """
    message = f"{timestamp}.{encode_payload(payload)}".encode()
    digest = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(payload: Any, secret: str, timestamp: int, signature: str) -> bool:
    """Verify a signature in constant time.

    Args:
        payload: Payload or raw body that was signed
        secret: Webhook secret
        timestamp: Epoch milliseconds from ``X-Timestamp``
        signature: Received ``X-Signature`` value

    Returns:
        True if the signature matches
    """
    expected = sign_payload(payload, secret, timestamp)
    return hmac.compare_digest(expected.encode(), signature.encode())
