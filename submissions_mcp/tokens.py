"""
Access token records and the slots that hold them.

A TokenSlot is a lock-guarded cell holding one immutable TokenRecord. Each
token purpose gets its own slot instance (the client's user token, the
server's delegated Submission API token), constructed once per process and
passed to whoever owns it. Replacing the record swaps a single reference
under the lock, so readers see either the old record or the new one, never a
mix of both.
"""

import datetime
import threading
from dataclasses import dataclass

from pydantic import BaseModel

DEFAULT_REFRESH_MARGIN = datetime.timedelta(minutes=5)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class TokenResponse(BaseModel):
    """JSON body returned by the identity server's token endpoint."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str | None = None

    def to_record(self, now: datetime.datetime) -> "TokenRecord":
        return TokenRecord(
            access_token=self.access_token,
            expires_at=now + datetime.timedelta(seconds=self.expires_in),
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            scope=self.scope,
        )


@dataclass(frozen=True)
class TokenRecord:
    access_token: str
    expires_at: datetime.datetime
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    def is_fresh(
        self,
        now: datetime.datetime,
        margin: datetime.timedelta = DEFAULT_REFRESH_MARGIN,
    ) -> bool:
        """True while the token has more than `margin` left before it expires."""
        return bool(self.access_token) and (self.expires_at - now) > margin

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks.
        return f"TokenRecord(expires_at={self.expires_at.isoformat()}, scope={self.scope!r})"


class TokenSlot:
    """Single current-token cell with atomic replacement."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._record: TokenRecord | None = None

    def get(self) -> TokenRecord | None:
        with self._lock:
            return self._record

    def replace(self, record: TokenRecord) -> None:
        with self._lock:
            self._record = record

    def clear(self) -> None:
        with self._lock:
            self._record = None
