"""HMAC signature verification for inbound ClickUp webhooks."""

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-clickup-signature", "x-signature")
SIGNATURE_PREFIX = "sha256="


def get_signature_header(headers) -> str | None:
    """Return the first signature header present on a request."""
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body keyed by the shared secret."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(
    body: bytes,
    header_signature: str | None,
    secret: str | None,
    *,
    allow_missing_header: bool = False,
) -> bool:
    """Check that a webhook body was signed by ClickUp.

    Args:
        body: Raw, unparsed request body
        header_signature: Value of the signature header, optionally prefixed with ``sha256=``
        secret: Configured webhook secret; empty or None disables verification
        allow_missing_header: Accept requests that carry no signature at all.
            The task-change webhook rejects them; the artifact-generation
            webhooks accept them because ClickUp Automations do not sign.

    Returns:
        True if the request should be accepted
    """
    if not secret:
        return True
    if not header_signature:
        return allow_missing_header

    provided = header_signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    try:
        provided_bytes = bytes.fromhex(provided)
    except ValueError:
        logger.debug("Signature header is not valid hex")
        return False

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, provided_bytes)
