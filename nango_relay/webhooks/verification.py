"""
Nango webhook verification utilities.

Signatures are the hex HMAC-SHA256 of the exact request body, keyed by the
webhook secret, and sent in the X-Nango-Signature header. Verification always
runs over the bytes as received, never a re-serialized copy of the payload.
"""

import hashlib
import hmac

from nango_relay.webhooks.errors import InvalidSignatureError

NANGO_SIGNATURE_HEADER = "x-nango-signature"


def compute_nango_signature(secret: str, body: bytes) -> str:
    """Compute the hex HMAC-SHA256 signature Nango sends for a body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_nango_signature(body: bytes, signature: str | None, secret: str | None) -> None:
    """Verify a webhook signature.

    With no secret configured, verification is skipped and any signature (or
    none) is accepted.

    Raises:
        InvalidSignatureError: If a secret is configured and the signature is missing
            or does not match
    """
    if not secret:
        return

    if not signature:
        raise InvalidSignatureError("Missing Nango webhook signature")

    expected = compute_nango_signature(secret, body)
    if not hmac.compare_digest(signature.strip().encode("utf-8"), expected.encode("utf-8")):
        raise InvalidSignatureError("Invalid Nango webhook signature")
