"""
Tracking of in-flight OAuth authorization requests.

An Authorization Code login spans two unrelated HTTP requests: the one that
issues the redirect to the identity server, and the callback the identity
server makes later. AuthorizationStateTracker ties them together through the
OAuth `state` parameter:

    state = tracker.create_pending_request(code_verifier=verifier, expect_waiter=True)
    # ... user is redirected, logs in, provider calls /oauth/callback ...
    tracker.set_result(state, code, error)        # from the callback handler
    code = await tracker.await_result(state)       # in whoever started the login

Each pending entry owns an asyncio.Future, so any number of logins can be in
flight at once without blocking each other. All methods must be called from
the event loop thread.

A state is single-use: once its future is resolved, later set_result calls
are ignored. The entry is removed as soon as the waiter returns, at
resolution time when no waiter is attached (a browser-only login), or when it
ages past the TTL.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field

from submissions_mcp.errors import AuthenticationFailed

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TTL_SECONDS = 600.0


@dataclass
class PendingAuthorization:
    """One login waiting for its provider callback."""

    state: str
    future: asyncio.Future
    created_at: float
    code_verifier: str | None = field(default=None, repr=False)
    authorization_url: str | None = None
    # Set by await_result, or up front by callers that will await later.
    has_waiter: bool = False

    def expired(self, ttl: float, now: float) -> bool:
        return (now - self.created_at) > ttl


@dataclass(frozen=True)
class _CallbackResult:
    code: str | None


class AuthorizationStateTracker:
    """Maps opaque state tokens to pending authorizations."""

    def __init__(self, pending_ttl_seconds: float = DEFAULT_PENDING_TTL_SECONDS):
        self._pending: dict[str, PendingAuthorization] = {}
        self._ttl = pending_ttl_seconds

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, state: object) -> bool:
        return state in self._pending

    def create_pending_request(
        self,
        authorization_url: str | None = None,
        *,
        code_verifier: str | None = None,
        expect_waiter: bool = False,
    ) -> str:
        """
        Allocate a fresh state and register an unresolved future for it.

        Pass `expect_waiter=True` when the caller will await_result() on the
        state, so that a callback arriving first is kept for it. Must be
        called while an event loop is running.
        """
        self.purge_expired()

        loop = asyncio.get_running_loop()
        state = secrets.token_urlsafe(32)
        while state in self._pending:
            state = secrets.token_urlsafe(32)

        self._pending[state] = PendingAuthorization(
            state=state,
            future=loop.create_future(),
            created_at=time.monotonic(),
            code_verifier=code_verifier,
            authorization_url=authorization_url,
            has_waiter=expect_waiter,
        )
        logger.debug(
            "Pending authorization created",
            extra={"auth_data": {"pending": len(self._pending)}},
        )
        return state

    def attach_authorization_url(self, state: str, authorization_url: str) -> None:
        entry = self._pending.get(state)
        if entry is not None:
            entry.authorization_url = authorization_url

    def take_verifier(self, state: str | None) -> str | None:
        """
        Hand out the PKCE verifier for `state` exactly once.

        Returns None for unknown, expired or already-consumed states.
        """
        if state is None:
            return None
        entry = self._pending.get(state)
        if entry is None:
            return None
        if entry.expired(self._ttl, time.monotonic()):
            self.discard(state)
            return None
        verifier, entry.code_verifier = entry.code_verifier, None
        return verifier

    async def await_result(self, state: str, timeout: float | None = None) -> str | None:
        """
        Wait for the callback that carries `state`.

        Returns the authorization code (which may be None if the callback
        resolved without one), or None immediately if the state is unknown.

        Raises:
            AuthenticationFailed: the provider reported an error for this state
            TimeoutError: no callback arrived within `timeout` seconds
            asyncio.CancelledError: the waiting task was cancelled
        """
        entry = self._pending.get(state)
        if entry is None:
            return None

        entry.has_waiter = True
        try:
            if timeout is None:
                result = await entry.future
            else:
                result = await asyncio.wait_for(entry.future, timeout)
            return result.code
        finally:
            self._pending.pop(state, None)

    def set_result(
        self,
        state: str | None,
        code: str | None,
        error: str | None,
        description: str | None = None,
    ) -> None:
        """
        Resolve the waiter for `state`.

        An error string rejects the waiter with AuthenticationFailed, carrying
        the provider's `description` when there is one. Unknown states and
        already-resolved states are ignored. Without a waiter the entry is
        simply dropped.
        """
        if state is None:
            return
        entry = self._pending.get(state)
        if entry is None or entry.future.done():
            return

        if error:
            logger.warning(
                "Authorization rejected by provider",
                extra={"auth_data": {"provider_error": error}},
            )

        if not entry.has_waiter:
            self.discard(state)
            return

        if error:
            entry.future.set_exception(AuthenticationFailed(error, description))
        else:
            entry.future.set_result(_CallbackResult(code=code))

    def discard(self, state: str) -> None:
        entry = self._pending.pop(state, None)
        if entry is not None and not entry.future.done():
            entry.future.cancel()

    def clear(self) -> None:
        """Drop every pending authorization, cancelling any waiters."""
        for state in list(self._pending):
            self.discard(state)

    def purge_expired(self) -> int:
        now = time.monotonic()
        expired = [s for s, entry in self._pending.items() if entry.expired(self._ttl, now)]
        for state in expired:
            self.discard(state)
        if expired:
            logger.info(
                "Expired pending authorizations purged",
                extra={"auth_data": {"purged": len(expired)}},
            )
        return len(expired)
