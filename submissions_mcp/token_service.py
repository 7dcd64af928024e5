"""
Client-side OAuth2 Authorization Code + PKCE token exchange.

TokenExchangeClient drives a user login against the identity server:

1. begin_authentication() / initiate_authentication() generate a PKCE pair,
   register the verifier with the AuthorizationStateTracker under a fresh
   state, and build the /connect/authorize URL.
2. The browser goes there, the user logs in, the provider redirects back to
   our callback with ?code=...&state=...
3. complete_authentication(code, state) takes the verifier for that state and
   redeems the code at /connect/token. On success the token slot is replaced
   in one step.

Exchange failures the user can recover from by simply logging in again
(provider rejects the code, network hiccup, garbage JSON) make
complete_authentication return False instead of raising. The token slot is
only written after a fully valid response has been parsed.
"""

import datetime
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

import httpx
import pydantic

from submissions_mcp.config import ClientSettings
from submissions_mcp.oauth_state import AuthorizationStateTracker
from submissions_mcp.pkce import generate_challenge, generate_verifier
from submissions_mcp.tokens import TokenResponse, TokenSlot, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingLogin:
    authorization_url: str
    state: str


class TokenExchangeClient:
    """Owns the client's current user token and the PKCE verifiers of pending logins."""

    def __init__(
        self,
        settings: ClientSettings,
        tracker: AuthorizationStateTracker,
        http_client: httpx.AsyncClient,
        token_slot: TokenSlot | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self._settings = settings
        self._tracker = tracker
        self._http = http_client
        self._slot = token_slot or TokenSlot()
        self._clock = clock
        self._margin = datetime.timedelta(seconds=settings.token_refresh_margin_seconds)

    # ----- Token access -----

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def is_authenticated(self) -> bool:
        record = self._slot.get()
        return record is not None and record.is_fresh(self._clock(), self._margin)

    async def get_access_token(self) -> str | None:
        """The current access token if it is still fresh, otherwise None."""
        record = self._slot.get()
        if record is None or not record.is_fresh(self._clock(), self._margin):
            return None
        return record.access_token

    def clear_token(self) -> None:
        """Forget the current token and abandon every pending login."""
        self._slot.clear()
        self._tracker.clear()
        logger.info("Token cleared")

    # ----- Login flow -----

    async def begin_authentication(self, expect_waiter: bool = False) -> PendingLogin:
        verifier = generate_verifier()
        state = self._tracker.create_pending_request(code_verifier=verifier, expect_waiter=expect_waiter)

        params = {
            "client_id": self._settings.client_id,
            "response_type": "code",
            "redirect_uri": self._settings.redirect_uri,
            "scope": " ".join(self._settings.scopes_list),
            "state": state,
            "code_challenge": generate_challenge(verifier),
            "code_challenge_method": "S256",
        }
        if self._settings.response_mode:
            params["response_mode"] = self._settings.response_mode

        url = f"{self._settings.authorization_endpoint}?{urlencode(params)}"
        self._tracker.attach_authorization_url(state, url)

        logger.info(
            "Authorization URL generated",
            extra={"auth_data": {"pending_logins": len(self._tracker)}},
        )
        return PendingLogin(authorization_url=url, state=state)

    async def initiate_authentication(self) -> str:
        """Start a login and return the URL the user must visit."""
        pending = await self.begin_authentication()
        return pending.authorization_url

    async def complete_authentication(self, code: str, state: str) -> bool:
        """
        Redeem an authorization code for the login identified by `state`.

        Returns:
            True if a new token is now current, False if the state is unknown
            or the exchange failed in a way a fresh login can fix.
        """
        verifier = self._tracker.take_verifier(state)
        if verifier is None:
            logger.warning("Code verifier not found for state (unknown, expired or already used)")
            return False

        form = {
            "grant_type": self._settings.grant_type,
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "code": code,
            "redirect_uri": self._settings.redirect_uri,
            "code_verifier": verifier,
        }

        try:
            response = await self._http.post(
                self._settings.token_endpoint,
                data=form,
                timeout=self._settings.timeout_seconds,
            )
        except httpx.TransportError as e:
            logger.error(
                "Token exchange failed: identity server unreachable",
                extra={"auth_data": {"error_type": type(e).__name__}},
            )
            return False

        if not response.is_success:
            logger.error(
                "Token exchange failed",
                extra={"auth_data": {"status_code": response.status_code, "error": response.text}},
            )
            return False

        try:
            token_response = TokenResponse.model_validate_json(response.content)
        except pydantic.ValidationError as e:
            logger.error(
                "Token exchange failed: invalid token response",
                extra={"auth_data": {"error_count": e.error_count()}},
            )
            return False

        record = token_response.to_record(self._clock())
        self._slot.replace(record)

        logger.info(
            "Authentication completed",
            extra={"auth_data": {"expires_at": record.expires_at.isoformat(), "scope": record.scope}},
        )
        return True

    async def login(
        self,
        open_url: Callable[[str], Any | Awaitable[Any]],
        timeout: float | None = None,
    ) -> bool:
        """
        Run a whole login: hand the authorization URL to `open_url` (e.g.
        webbrowser.open) and wait for the callback to complete it.

        The callback handler is expected to call complete_authentication()
        and then resolve the tracker for the same state.
        """
        pending = await self.begin_authentication(expect_waiter=True)
        opened = open_url(pending.authorization_url)
        if inspect.isawaitable(opened):
            await opened

        code = await self._tracker.await_result(pending.state, timeout=timeout)
        return code is not None and self.is_authenticated
