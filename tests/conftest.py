"""
Shared test fixtures for the Submissions MCP test suite.

Pytest fixtures are reusable setup functions that tests can request by name.
They run before each test and provide the test with preconfigured objects.

Key fixtures:
- make_token: A factory function to generate JWT tokens with any claims
- make_auth_header: Same, but returns the full "Bearer <token>" header value
- server_settings / client_settings: Settings pointing at fake hosts
- upstream: A fake identity server + Submission API behind httpx.MockTransport
- clock: A controllable clock for token freshness tests

Testing approach:
- Unit tests (test_auth.py, test_pkce.py, test_oauth_state.py, ...) exercise
  one component at a time with its collaborators injected.
- test_invoker.py drives the whole tool pipeline with a fake inbound request
  and the fake upstream, so every downstream request can be inspected.
- test_tools.py and test_client_app.py send real HTTP requests to the ASGI
  apps (in-memory, no network needed).
"""

import datetime
import json

import httpx
import jwt
import pytest

from submissions_mcp.config import ClientSettings, Settings

# The server never verifies signatures, so any key works.
TEST_SECRET = "test-signing-key"
TEST_ALGORITHM = "HS256"

IDENTITY_URL = "https://identity.test"
TOKEN_URL = f"{IDENTITY_URL}/connect/token"
SUBMISSION_API_URL = "https://submission-api.test/"


# ---------------------------------------------------------------------------
# Token factory fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def make_token():
    """
    Factory fixture to generate JWT tokens for testing.

    Usage in tests:
        def test_something(make_token):
            token = make_token(sub="alice", scopes=["openid", "submission-api"])
            # token is a raw JWT string (not "Bearer ..." prefixed)
    """

    def _make_token(
        sub: str = "test-user",
        scopes: list[str] | None = None,
        exp_hours: float = 1.0,
        extra_claims: dict | None = None,
        include_exp: bool = True,
    ) -> str:
        """
        Generate a JWT token with the given claims.

        Args:
            sub: Subject claim
            scopes: Scopes, joined into one space-delimited "scope" claim
                (None means omit the claim entirely)
            exp_hours: Hours until expiration (negative = already expired)
            extra_claims: Additional claims, applied last so they can override
            include_exp: Whether to include the exp claim
        """
        now = datetime.datetime.now(datetime.timezone.utc)
        payload: dict = {"sub": sub, "iat": now}

        if scopes is not None:
            payload["scope"] = " ".join(scopes)

        if include_exp:
            payload["exp"] = now + datetime.timedelta(hours=exp_hours)

        if extra_claims:
            payload.update(extra_claims)

        return jwt.encode(payload, TEST_SECRET, algorithm=TEST_ALGORITHM)

    return _make_token


@pytest.fixture
def make_auth_header(make_token):
    """Convenience fixture that returns a full "Bearer <token>" string."""

    def _make_auth_header(**kwargs) -> str:
        return f"Bearer {make_token(**kwargs)}"

    return _make_auth_header


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@pytest.fixture
def server_settings() -> Settings:
    return Settings(
        identity_server_url=IDENTITY_URL,
        client_id="submissions-mcp",
        client_secret="server-secret",
        submission_api_base_url=SUBMISSION_API_URL,
        submission_api_required_scope="submission-api",
        submission_api_user_agent="mcp-submission-client",
        submission_api_version="1.0",
    )


@pytest.fixture
def client_settings() -> ClientSettings:
    return ClientSettings(
        identity_server_url=IDENTITY_URL,
        client_id="submissions-mcp-client",
        client_secret="client-secret",
        scopes="openid profile submission-api",
        redirect_uri="http://localhost:7071/oauth/callback",
        mcp_server_url="http://localhost:7072/mcp",
    )


# ---------------------------------------------------------------------------
# Fake upstream services
# ---------------------------------------------------------------------------
def token_json(access_token: str = "downstream-token", expires_in: int = 3600, **extra) -> httpx.Response:
    body = {"access_token": access_token, "token_type": "Bearer", "expires_in": expires_in, **extra}
    return httpx.Response(200, json=body)


class FakeUpstream:
    """
    Serves canned responses for the identity server and the Submission API.

    Routes are keyed by (method, host, path). A route value is either an
    httpx.Response or a callable taking the request (which may raise an
    httpx transport error). Every request is recorded, in order.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str, str], object] = {}
        self.on("POST", TOKEN_URL, token_json())

    def on(self, method: str, url: str, response) -> None:
        parsed = httpx.URL(url)
        self._routes[(method, parsed.host, parsed.path)] = response

    def api(self, method: str, path: str, response) -> None:
        self.on(method, f"{SUBMISSION_API_URL}{path}", response)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._routes.get((request.method, request.url.host, request.url.path))
        if route is None:
            return httpx.Response(404, text=f"no route for {request.method} {request.url}")
        if isinstance(route, httpx.Response):
            # Fresh copy per request so a canned response can be served repeatedly.
            return httpx.Response(route.status_code, headers=route.headers, content=route.content)
        return route(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/connect/token"]

    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == httpx.URL(SUBMISSION_API_URL).host]


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


def json_body(request: httpx.Request):
    return json.loads(request.content)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------
class FakeClock:
    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc))
