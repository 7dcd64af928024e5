"""
PKCE (Proof Key for Code Exchange, RFC 7636) helpers.

The verifier stays on the client; only its S256 challenge travels through the
browser redirect. Redeeming the authorization code later requires the
verifier, so a stolen code alone is useless.

Reusing a verifier across login attempts is a caller error and is not guarded
against here.
"""

import base64
import hashlib
import secrets

MIN_VERIFIER_BYTES = 32


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_verifier(num_bytes: int = MIN_VERIFIER_BYTES) -> str:
    """
    Generate a random code_verifier.

    32 random bytes encode to 43 URL-safe characters, the RFC 7636 minimum.

    Raises:
        ValueError: if fewer than 32 bytes of randomness are requested
    """
    if num_bytes < MIN_VERIFIER_BYTES:
        raise ValueError(f"code_verifier needs at least {MIN_VERIFIER_BYTES} random bytes")
    return _b64url(secrets.token_bytes(num_bytes))


def generate_challenge(verifier: str) -> str:
    """Return BASE64URL(SHA256(verifier)) without padding."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
