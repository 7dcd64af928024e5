"""
Integration tests for the browser-facing login app (submissions_mcp/client_app.py).

Requests go to the Starlette app in-memory through httpx.ASGITransport; the
identity server's token endpoint is the FakeUpstream from conftest.py.
"""

import asyncio
import datetime
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from conftest import TOKEN_URL
from fastmcp import FastMCP
from fastmcp.client.transports import FastMCPTransport

from submissions_mcp.client_app import create_client_app
from submissions_mcp.errors import AuthenticationFailed
from submissions_mcp.mcp_client import SubmissionsMcpClient
from submissions_mcp.oauth_state import AuthorizationStateTracker
from submissions_mcp.token_service import TokenExchangeClient
from submissions_mcp.tokens import TokenRecord, TokenSlot


@pytest.fixture
def tracker():
    return AuthorizationStateTracker()


@pytest.fixture
def token_client(client_settings, tracker, upstream):
    return TokenExchangeClient(client_settings, tracker, upstream.client())


@pytest.fixture
async def browser(token_client, tracker):
    app = create_client_app(token_client, tracker)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://localhost:7071") as client:
        yield client


def state_of(url: str) -> str:
    return parse_qs(urlsplit(url).query)["state"][0]


class TestLogin:
    async def test_login_redirects_to_identity_server(self, browser, tracker):
        response = await browser.get("/login")

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith("https://identity.test/connect/authorize?")
        assert state_of(location) in tracker


class TestCallback:
    async def test_successful_callback_stores_token(self, browser, token_client):
        login = await browser.get("/login")
        state = state_of(login.headers["location"])

        response = await browser.get("/oauth/callback", params={"code": "auth-code", "state": state})

        assert response.status_code == 200
        assert "Authentication Complete" in response.text
        assert token_client.is_authenticated
        status = await browser.get("/auth/status")
        assert status.json() == {"authenticated": True}

    async def test_browser_login_leaves_no_pending_state(self, browser, tracker):
        login = await browser.get("/login")
        state = state_of(login.headers["location"])

        await browser.get("/oauth/callback", params={"code": "auth-code", "state": state})

        assert state not in tracker
        assert len(tracker) == 0

    async def test_failed_browser_login_leaves_no_pending_state(self, browser, tracker, upstream):
        upstream.on("POST", TOKEN_URL, httpx.Response(400, json={"error": "invalid_grant"}))
        login = await browser.get("/login")
        state = state_of(login.headers["location"])

        response = await browser.get("/oauth/callback", params={"code": "bad-code", "state": state})

        assert response.status_code == 400
        assert state not in tracker

    async def test_rejected_browser_login_leaves_no_pending_state(self, browser, tracker):
        login = await browser.get("/login")
        state = state_of(login.headers["location"])

        await browser.get("/oauth/callback", params={"error": "access_denied", "state": state})

        assert state not in tracker

    async def test_callback_wakes_login_waiter(self, browser, token_client, tracker):
        pending = await token_client.begin_authentication(expect_waiter=True)
        waiter = asyncio.create_task(tracker.await_result(pending.state, timeout=5))
        await asyncio.sleep(0)

        await browser.get("/oauth/callback", params={"code": "auth-code", "state": pending.state})

        assert await waiter == "auth-code"
        assert token_client.is_authenticated

    async def test_provider_error_fails_waiter(self, browser, token_client, tracker):
        pending = await token_client.begin_authentication(expect_waiter=True)
        waiter = asyncio.create_task(tracker.await_result(pending.state, timeout=5))
        await asyncio.sleep(0)

        response = await browser.get(
            "/oauth/callback",
            params={"error": "access_denied", "error_description": "User cancelled", "state": pending.state},
        )

        assert response.status_code == 400
        assert "access_denied" in response.text
        with pytest.raises(AuthenticationFailed) as exc_info:
            await waiter
        assert exc_info.value.description == "User cancelled"
        assert pending.state not in tracker

    @pytest.mark.parametrize(
        "params",
        [{}, {"code": "auth-code"}, {"state": "some-state"}],
        ids=["nothing", "code-only", "state-only"],
    )
    async def test_missing_parameters(self, browser, upstream, params):
        response = await browser.get("/oauth/callback", params=params)

        assert response.status_code == 400
        assert "Missing authorization code or state parameter" in response.text
        assert upstream.requests == []

    async def test_unknown_state_is_rejected(self, browser, token_client, upstream):
        response = await browser.get("/oauth/callback", params={"code": "auth-code", "state": "forged"})

        assert response.status_code == 400
        assert not token_client.is_authenticated
        assert upstream.requests == []

    async def test_failed_exchange_fails_waiter(self, browser, token_client, tracker, upstream):
        upstream.on("POST", TOKEN_URL, httpx.Response(400, json={"error": "invalid_grant"}))
        pending = await token_client.begin_authentication(expect_waiter=True)
        waiter = asyncio.create_task(tracker.await_result(pending.state, timeout=5))
        await asyncio.sleep(0)

        response = await browser.get("/oauth/callback", params={"code": "bad-code", "state": pending.state})

        assert response.status_code == 400
        with pytest.raises(AuthenticationFailed, match="token_exchange_failed"):
            await waiter

    async def test_error_text_is_escaped(self, browser):
        response = await browser.get("/oauth/callback", params={"error": "<script>alert(1)</script>"})

        assert response.status_code == 400
        assert "<script>" not in response.text


class TestStatusAndLogout:
    async def test_status_before_login(self, browser):
        response = await browser.get("/auth/status")

        assert response.json() == {"authenticated": False}

    async def test_logout_forgets_token(self, browser, token_client):
        login = await browser.get("/login")
        await browser.get(
            "/oauth/callback", params={"code": "auth-code", "state": state_of(login.headers["location"])}
        )

        response = await browser.post("/logout")

        assert response.json() == {"authenticated": False}
        assert not token_client.is_authenticated


class TestToolRoutes:
    @pytest.fixture
    def slot(self):
        return TokenSlot()

    @pytest.fixture
    def token_client(self, client_settings, tracker, upstream, slot):
        return TokenExchangeClient(client_settings, tracker, upstream.client(), token_slot=slot)

    @pytest.fixture
    def logged_in(self, slot):
        expires_at = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=1)
        slot.replace(TokenRecord(access_token="user-token", expires_at=expires_at))

    @pytest.fixture
    async def browser(self, client_settings, token_client, tracker):
        server = FastMCP(name="echo")

        @server.tool(description="Echo the text back")
        def echo(text: str) -> str:
            return text

        mcp_client = SubmissionsMcpClient(
            client_settings, token_client, transport_factory=lambda token: FastMCPTransport(server)
        )
        app = create_client_app(token_client, tracker, mcp_client)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://localhost:7071") as client:
            yield client

    async def test_tools_require_login(self, browser):
        response = await browser.get("/tools")

        assert response.status_code == 401
        assert "authenticate first" in response.json()["error"]

    async def test_tools_are_listed(self, browser, logged_in):
        response = await browser.get("/tools")

        assert response.status_code == 200
        assert response.json() == {"tools": [{"name": "echo", "description": "Echo the text back"}]}

    async def test_tool_is_called_with_body_as_arguments(self, browser, logged_in):
        response = await browser.post("/tools/echo", json={"text": "hello"})

        assert response.status_code == 200
        assert response.json() == {"tool": "echo", "result": "hello"}

    async def test_tool_failure_is_a_bad_gateway(self, browser, logged_in):
        response = await browser.post("/tools/missing", json={})

        assert response.status_code == 502
        assert "missing" in response.json()["error"]

    @pytest.mark.parametrize("body", [b"[1, 2]", b"{ invalid"], ids=["array", "malformed"])
    async def test_body_must_be_a_json_object(self, browser, logged_in, body):
        response = await browser.post("/tools/echo", content=body)

        assert response.status_code == 400
