"""Webhook signature verification.

Shopify signs each webhook with HMAC-SHA256 over the raw request body and
sends the base64 digest in the X-Shopify-Hmac-Sha256 header. The digest must
be computed over the exact bytes received; re-serializing parsed JSON changes
key order and whitespace and breaks the comparison.
"""

import base64
import hashlib
import hmac

from .errors import AuthenticationFailure


def compute_signature(raw_body: bytes, secret: bytes | str) -> str:
    """Return the base64 HMAC-SHA256 digest of raw_body."""
    if isinstance(secret, str):
        secret = secret.encode()
    digest = hmac.new(secret, raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify(raw_body: bytes | None, claimed_signature: str | None, secret: bytes | str | None) -> bool:
    """Check claimed_signature against the body. Never raises; fails closed."""
    if not raw_body or not claimed_signature or not secret:
        return False
    expected = compute_signature(raw_body, secret)
    try:
        return hmac.compare_digest(expected.encode(), claimed_signature.encode())
    except (TypeError, UnicodeEncodeError):
        return False


def require_valid_signature(raw_body: bytes | None, claimed_signature: str | None, secret: bytes | str | None) -> None:
    """Raise AuthenticationFailure unless the signature matches."""
    if not claimed_signature:
        raise AuthenticationFailure("Missing webhook signature")
    if not verify(raw_body, claimed_signature, secret):
        raise AuthenticationFailure("Invalid webhook signature")
