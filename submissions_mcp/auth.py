"""
Bearer token extraction and offline scope validation.

This module handles the server-side Authentication (AuthN) layer that runs
inside every tool call:
- Extracts the Bearer token from the inbound HTTP Authorization header
- Decodes the JWT payload offline (no network, no signature check)
- Checks expiration and matches the required scope

Trust boundary:
    The MCP transport sits behind infrastructure that already authenticated
    the caller against the identity server. The scope check here reads the
    claims WITHOUT verifying the signature. Adding signature verification
    would change which tokens are accepted, so it is a deliberate decision
    and not something to slip in here.

Token structure (JWT payload) as issued by the identity server:
    {
        "sub": "user-or-client-id",
        "scope": "openid submission-api",   # space-delimited
        "exp": 1738800000                   # Unix timestamp
    }
"""

import datetime
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable

import jwt

from submissions_mcp.errors import AuthenticationContextUnavailable, MissingOrMalformedCredential
from submissions_mcp.tokens import utcnow

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
AUTHORIZATION_HEADER_NAMES = ("Authorization", "authorization")


@dataclass(frozen=True)
class BearerClaims:
    """
    Claims read from a bearer token for a single call. Never persisted.

    Attributes:
        scopes: Granted scopes, exact strings
        expires_at: Value of the "exp" claim
    """

    scopes: frozenset[str]
    expires_at: datetime.datetime


# ---------------------------------------------------------------------------
# Bearer token extraction
# ---------------------------------------------------------------------------


def _lookup_header(headers: Any, name: str) -> str | None:
    # Starlette Headers and dicts offer .get(); some header containers only
    # support indexing and raise KeyError for absent names.
    getter = getattr(headers, "get", None)
    if callable(getter):
        return getter(name)
    try:
        return headers[name]
    except KeyError:
        return None


class BearerTokenExtractor:
    """Reads the raw bearer token from request headers."""

    def extract(self, headers: Mapping[str, str] | Any) -> str:
        """
        Return the token from an "Authorization: Bearer <token>" header.

        Only the exact, case-sensitive "Bearer " prefix is accepted.

        Raises:
            MissingOrMalformedCredential: header absent, other scheme, or no token
        """
        value = None
        for name in AUTHORIZATION_HEADER_NAMES:
            value = _lookup_header(headers, name)
            if value:
                break

        if isinstance(value, (list, tuple)):
            value = value[0] if value else None

        if not value or not value.startswith(BEARER_PREFIX):
            raise MissingOrMalformedCredential()

        token = value[len(BEARER_PREFIX):]
        if not token.strip():
            raise MissingOrMalformedCredential()
        return token

    def extract_from_request(self, request_provider: Callable[[], Any]) -> str:
        """
        Extract the token from the current HTTP request.

        `request_provider` returns the active request (FastMCP's
        get_http_request) and raises RuntimeError outside an HTTP context.

        Raises:
            AuthenticationContextUnavailable: no HTTP request is active
            MissingOrMalformedCredential: see extract()
        """
        try:
            request = request_provider()
        except RuntimeError:
            raise AuthenticationContextUnavailable()
        if request is None:
            raise AuthenticationContextUnavailable()
        return self.extract(request.headers)


# ---------------------------------------------------------------------------
# Offline scope validation
# ---------------------------------------------------------------------------


def _parse_scope_claim(claim: Any) -> frozenset[str]:
    if isinstance(claim, str):
        return frozenset(claim.split())
    # Some identity servers emit scope as a JSON array.
    if isinstance(claim, list) and all(isinstance(s, str) for s in claim):
        return frozenset(claim)
    return frozenset()


class ScopeValidator:
    """
    Decides whether a bearer token grants a required scope.

    has_required_scope() is a pure predicate: it never raises and never
    touches the network.
    """

    def __init__(self, clock: Callable[[], datetime.datetime] = utcnow):
        self._clock = clock

    def read_claims(self, token: str | None) -> BearerClaims | None:
        """Decode the payload without verifying the signature. None if unreadable."""
        if not token or not token.strip():
            return None
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            return None

        try:
            expires_at = datetime.datetime.fromtimestamp(exp, tz=datetime.timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

        return BearerClaims(scopes=_parse_scope_claim(payload.get("scope")), expires_at=expires_at)

    def has_required_scope(self, token: str | None, required_scope: str | None) -> bool:
        if not isinstance(required_scope, str) or not required_scope.strip():
            return False
        try:
            claims = self.read_claims(token)
            if claims is None:
                logger.warning("Scope check failed: unreadable JWT")
                return False

            if self._clock() >= claims.expires_at:
                logger.warning("Scope check failed: JWT has expired")
                return False

            if required_scope not in claims.scopes:
                logger.warning(
                    "Scope check failed: required scope missing",
                    extra={"auth_data": {"required_scope": required_scope}},
                )
                return False
            return True
        except Exception:
            logger.exception("Error validating JWT token for required scope")
            return False
