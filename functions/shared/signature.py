"""
Webhook signature verification.

Verification runs over the exact bytes API Gateway delivered. Nothing here
parses or re-serializes the payload: any whitespace or key-order change would
invalidate the provider's HMAC.
"""

import logging

import stripe

from shared.constants import DEFAULT_WEBHOOK_TOLERANCE_SECONDS
from shared.errors import SignatureInvalidError

logger = logging.getLogger(__name__)


def get_signature_header(headers: dict | None) -> str | None:
    """Find the Stripe-Signature header regardless of casing."""
    for name, value in (headers or {}).items():
        if name.lower() == "stripe-signature":
            return value
    return None


def verify_signature(
    payload: bytes,
    sig_header: str | None,
    secret: str,
    tolerance: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS,
) -> bytes:
    """Authenticate a webhook payload against the shared secret.

    Args:
        payload: Raw request body, byte-for-byte as received
        sig_header: Value of the Stripe-Signature header
        secret: Webhook signing secret
        tolerance: Maximum age of the signature timestamp in seconds

    Returns:
        The verified payload bytes, unchanged

    Raises:
        SignatureInvalidError: header missing, malformed, expired or not matching
    """
    if not sig_header:
        raise SignatureInvalidError("Missing Stripe signature")

    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise SignatureInvalidError()

    try:
        stripe.WebhookSignature.verify_header(text, sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Invalid Stripe signature: {e}")
        raise SignatureInvalidError()

    return payload
