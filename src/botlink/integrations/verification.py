"""Webhook verification shared by all providers.

Two entry points, both pure functions of the request and the stored secret:
- verify_handshake(): the GET subscription handshake (hub.mode/verify_token/
  challenge) used by Meta to confirm webhook ownership.
- verify_signature(): HMAC-SHA256 check of POST deliveries (X-Hub-Signature-256).

Token comparison is constant-time and fail-closed: an empty stored token
never matches.
"""

import hashlib
import hmac

from .models import WebhookVerificationResult

SUBSCRIBE_MODE = "subscribe"


class SignatureVerificationError(Exception):
    """Raised when HMAC signature verification fails."""

    pass


def tokens_match(provided: str | None, expected: str | None) -> bool:
    """Compare a request token against the stored one in constant time."""
    if not expected or provided is None:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def verify_handshake(
    *,
    mode: str | None,
    token: str | None,
    challenge: str | None,
    verify_token: str | None,
) -> WebhookVerificationResult:
    """Run the subscription handshake.

    Args:
        mode: hub.mode query parameter. Must be "subscribe".
        token: hub.verify_token query parameter.
        challenge: hub.challenge query parameter, echoed back on success.
        verify_token: Token stored with the integration.

    Returns:
        verified=True with the challenge, or verified=False. The stored
        token is never part of the result.
    """
    if mode == SUBSCRIBE_MODE and tokens_match(token, verify_token):
        return WebhookVerificationResult(verified=True, challenge=challenge or "")
    return WebhookVerificationResult(verified=False)


def verify_signature(payload_bytes: bytes, signature_header: str, app_secret: str) -> None:
    """Verify Meta webhook signature (HMAC-SHA256).

    Meta signs webhooks with sha256=<hex_signature> format.

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: X-Hub-Signature-256 header value (sha256=...).
        app_secret: Meta App Secret for HMAC verification.

    Raises:
        SignatureVerificationError: If signature is invalid or missing.
    """
    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    if not signature_header.startswith("sha256="):
        raise SignatureVerificationError("invalid signature format")

    expected_sig = signature_header[7:]  # Remove "sha256=" prefix

    computed_sig = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(computed_sig.encode("utf-8"), expected_sig.encode("utf-8")):
        raise SignatureVerificationError("signature mismatch")
