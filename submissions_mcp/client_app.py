"""
Browser-facing login endpoints for the MCP client.

    GET  /login           -> 302 to the identity server's authorize URL
    GET  /oauth/callback  -> redeems ?code=&state= (or records ?error=)
    GET  /auth/status     -> {"authenticated": bool}
    POST /logout          -> forgets the current token
    GET  /tools           -> tools offered by the MCP server, called with the user's token
    POST /tools/{name}    -> calls one tool with the JSON body as its arguments

The callback completes the token exchange first and only then resolves the
pending state, so anything awaiting that state (TokenExchangeClient.login)
wakes up with the token already in place.

Running the client:
    python -m submissions_mcp.client_app
"""

import html
import json
import logging

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from submissions_mcp.config import ClientSettings
from submissions_mcp.errors import McpInvocationError, NotAuthenticatedError
from submissions_mcp.logs import configure_logging
from submissions_mcp.mcp_client import SubmissionsMcpClient
from submissions_mcp.oauth_state import AuthorizationStateTracker
from submissions_mcp.token_service import TokenExchangeClient

logger = logging.getLogger(__name__)


def _page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    body = (
        "<html><head><title>{title}</title></head><body>"
        "<h1>{title}</h1><p>{message}</p>"
        "<p>You can close this window now.</p>"
        "</body></html>"
    ).format(title=html.escape(title), message=html.escape(message))
    return HTMLResponse(body, status_code=status_code)


def create_client_app(
    token_client: TokenExchangeClient,
    tracker: AuthorizationStateTracker,
    mcp_client: SubmissionsMcpClient | None = None,
) -> Starlette:
    if mcp_client is None:
        mcp_client = SubmissionsMcpClient(token_client.settings, token_client)

    async def login(request: Request) -> Response:
        url = await token_client.initiate_authentication()
        return RedirectResponse(url, status_code=302)

    async def oauth_callback(request: Request) -> Response:
        query = request.query_params
        code = query.get("code")
        state = query.get("state")
        error = query.get("error")

        if error:
            description = query.get("error_description") or ""
            logger.warning(
                "Provider returned an authorization error",
                extra={"auth_data": {"error": error, "error_description": description}},
            )
            tracker.set_result(state, None, error, description or None)
            return _page("Authentication Error", f"Error: {error}. {description}".strip(), 400)

        if not code or not state:
            return _page("Authentication Error", "Missing authorization code or state parameter", 400)

        if await token_client.complete_authentication(code, state):
            tracker.set_result(state, code, None)
            return _page("Authentication Complete", "Authentication completed successfully.")

        tracker.set_result(state, None, "token_exchange_failed")
        return _page("Authentication Failed", "Failed to complete authentication. Please try again.", 400)

    async def auth_status(request: Request) -> Response:
        return JSONResponse({"authenticated": token_client.is_authenticated})

    async def logout(request: Request) -> Response:
        token_client.clear_token()
        return JSONResponse({"authenticated": False})

    async def list_tools(request: Request) -> Response:
        try:
            tools = await mcp_client.list_tools()
        except NotAuthenticatedError as e:
            return JSONResponse({"error": str(e)}, status_code=401)
        except McpInvocationError as e:
            return JSONResponse({"error": str(e)}, status_code=502)
        return JSONResponse(
            {"tools": [{"name": tool.name, "description": tool.description} for tool in tools]}
        )

    async def call_tool(request: Request) -> Response:
        tool_name = request.path_params["name"]
        body = await request.body()
        try:
            arguments = json.loads(body) if body else {}
        except json.JSONDecodeError:
            return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)
        if not isinstance(arguments, dict):
            return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)

        try:
            text = await mcp_client.call_tool(tool_name, arguments)
        except NotAuthenticatedError as e:
            return JSONResponse({"error": str(e)}, status_code=401)
        except McpInvocationError as e:
            return JSONResponse({"error": str(e)}, status_code=502)
        return JSONResponse({"tool": tool_name, "result": text})

    return Starlette(
        routes=[
            Route("/login", login, methods=["GET"]),
            Route("/oauth/callback", oauth_callback, methods=["GET"]),
            Route("/auth/status", auth_status, methods=["GET"]),
            Route("/logout", logout, methods=["POST"]),
            Route("/tools", list_tools, methods=["GET"]),
            Route("/tools/{name}", call_tool, methods=["POST"]),
        ]
    )


if __name__ == "__main__":
    import uvicorn

    client_settings = ClientSettings()
    configure_logging(client_settings.log_level)

    state_tracker = AuthorizationStateTracker(client_settings.pending_ttl_seconds)
    exchange_client = TokenExchangeClient(
        client_settings,
        state_tracker,
        httpx.AsyncClient(timeout=client_settings.timeout_seconds),
    )

    logger.info("Starting login app on %s:%d", client_settings.host, client_settings.port)
    logger.info("Using identity server: %s", client_settings.identity_server_url)
    logger.info("Client ID: %s", client_settings.client_id)
    logger.info("Grant type: %s", client_settings.grant_type)
    logger.info("MCP server: %s", client_settings.mcp_server_url)
    uvicorn.run(
        create_client_app(exchange_client, state_tracker),
        host=client_settings.host,
        port=client_settings.port,
        log_level=client_settings.log_level,
    )
