"""
Delegated credentials for the Submission API.

The server never forwards the caller's token downstream. It obtains its own
token with the client_credentials grant, scoped to the Submission API, and
caches it in a dedicated TokenSlot under the same freshness rule as the
client: a token is reused only while it has more than the refresh margin
left.
"""

import asyncio
import datetime
import logging
from typing import Callable

import httpx
import pydantic

from submissions_mcp.config import Settings
from submissions_mcp.errors import TokenAcquisitionError
from submissions_mcp.tokens import TokenResponse, TokenSlot, utcnow

logger = logging.getLogger(__name__)


class DelegatedTokenAcquirer:
    """Acquires and caches the Submission API token. Sole writer of its slot."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        token_slot: TokenSlot | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self._settings = settings
        self._http = http_client
        self._slot = token_slot or TokenSlot()
        self._clock = clock
        self._margin = datetime.timedelta(seconds=settings.token_refresh_margin_seconds)
        # Concurrent cache misses share a single token request.
        self._refresh_lock = asyncio.Lock()

    def _cached_token(self) -> str | None:
        record = self._slot.get()
        if record is not None and record.is_fresh(self._clock(), self._margin):
            return record.access_token
        return None

    async def acquire(self) -> str:
        """
        Return a fresh Submission API token, requesting a new one if needed.

        Raises:
            TokenAcquisitionError: the identity server refused or was unreachable
        """
        token = self._cached_token()
        if token is not None:
            return token

        async with self._refresh_lock:
            token = self._cached_token()
            if token is not None:
                return token

            token_response = await self._request_token()
            record = token_response.to_record(self._clock())
            self._slot.replace(record)
            logger.info(
                "Submission API token acquired",
                extra={"auth_data": {"expires_at": record.expires_at.isoformat(), "scope": record.scope}},
            )
            return record.access_token

    def invalidate(self) -> None:
        self._slot.clear()
        logger.info("Submission API token invalidated")

    async def _request_token(self) -> TokenResponse:
        form = {
            "grant_type": self._settings.grant_type,
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "scope": self._settings.submission_api_required_scope,
        }

        try:
            response = await self._http.post(
                self._settings.token_endpoint,
                data=form,
                timeout=self._settings.http_timeout_seconds,
            )
        except httpx.TransportError as e:
            logger.error(
                "Submission API token request failed: identity server unreachable",
                extra={"auth_data": {"error_type": type(e).__name__}},
            )
            raise TokenAcquisitionError("identity_server_unreachable", str(e)) from e

        if not response.is_success:
            logger.error(
                "Submission API token request rejected",
                extra={"auth_data": {"status_code": response.status_code, "error": response.text}},
            )
            raise TokenAcquisitionError(f"token_endpoint_status_{response.status_code}", response.text)

        try:
            return TokenResponse.model_validate_json(response.content)
        except pydantic.ValidationError as e:
            logger.error("Submission API token response was not a valid token response")
            raise TokenAcquisitionError("invalid_token_response") from e
