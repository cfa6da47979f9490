"""
WhatsApp Webhook Security

SECURITY BOUNDARY - verify-token handshake and Meta HMAC signature.
Pure functions; the router decides which secret applies to a channel.
"""

import hashlib
import hmac
from typing import Optional

SIGNATURE_HEADER = "X-Hub-Signature-256"


class SignatureVerificationError(Exception):
    """Signature missing or does not match the body."""
    pass


class ChallengeVerificationError(Exception):
    """hub.mode or hub.verify_token rejected."""
    pass


def compute_signature(body: bytes, app_secret: str) -> str:
    """Header value Meta would send for this body: 'sha256=<hex>'."""
    digest = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, signature: Optional[str], app_secret: str) -> None:
    """
    Verify Meta HMAC-SHA256 signature on a webhook body.

    Raises:
        SignatureVerificationError: missing header or mismatch
    """
    if not signature:
        raise SignatureVerificationError(f"Missing {SIGNATURE_HEADER} header")

    expected = compute_signature(body, app_secret)

    # Constant-time comparison
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        raise SignatureVerificationError("Invalid signature")


def verify_webhook_challenge(
    hub_mode: Optional[str],
    hub_verify_token: Optional[str],
    hub_challenge: Optional[str],
    expected_token: str,
) -> str:
    """
    Verify a webhook subscription handshake.

    WhatsApp calls GET /webhook/{channel_id} with:
    - hub.mode=subscribe
    - hub.verify_token=<token stored on the channel>
    - hub.challenge=<random string>

    Returns:
        The challenge string, to be echoed back verbatim

    Raises:
        ChallengeVerificationError: wrong mode or token
    """
    if hub_mode != "subscribe":
        raise ChallengeVerificationError("Invalid hub.mode")

    if not hub_verify_token or not hmac.compare_digest(
        hub_verify_token.encode("utf-8"), (expected_token or "").encode("utf-8")
    ):
        raise ChallengeVerificationError("Invalid hub.verify_token")

    return hub_challenge or ""
