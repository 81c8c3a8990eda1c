"""웹훅 HMAC 서명 검증."""

from __future__ import annotations

import hashlib
import hmac

from .errors import AuthenticationFailed

SIGNATURE_HEADER = "X-Hub-Signature-256"
SCHEME = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    """수신한 원문 바이트에 대한 `sha256=<hex>` 서명."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return SCHEME + digest


def verify_signature(secret: str, body: bytes, presented: str | None) -> None:
    expected = compute_signature(secret, body)
    if not presented or not hmac.compare_digest(expected.encode("ascii"), presented.encode("utf-8")):
        raise AuthenticationFailed("signature mismatch")
