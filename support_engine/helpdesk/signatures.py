"""HMAC verification for helpdesk webhook deliveries."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping

from ..core.errors import SignatureVerificationError

_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Return the lowercase hex HMAC-SHA256 of ``body``."""

    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check ``signature`` against the raw request ``body``.

    Returns ``True`` when no secret is configured. The signature may carry a
    ``sha256=`` prefix and is compared case-insensitively in constant time.
    """

    if not secret:
        return True
    if not signature:
        return False
    received = signature.strip()
    if received.lower().startswith(_PREFIX):
        received = received[len(_PREFIX):]
    expected = compute_signature(body, secret)
    return hmac.compare_digest(received.lower(), expected)


def require_valid_signature(
    body: bytes,
    headers: Mapping[str, str],
    *,
    header_name: str,
    secret: str | None,
) -> None:
    """Raise :class:`SignatureVerificationError` for a missing or bad signature."""

    if not secret:
        return
    signature = headers.get(header_name)
    if not signature:
        raise SignatureVerificationError("Missing webhook signature")
    if not verify_signature(body, signature, secret):
        raise SignatureVerificationError("Invalid webhook signature")
