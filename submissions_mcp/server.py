"""
MCP server exposing the Submission API through FastMCP v2.

This module creates and runs the MCP server with:
- Four tools: get_submission, create_submission, list_submissions, decline_submission
- Bearer authentication inside every tool call: the caller's token must carry
  the Submission API scope before anything is sent downstream
- Delegated credentials: downstream calls use the server's own
  client_credentials token, never the caller's
- Structured JSON logging for all auth decisions and tool outcomes
- OAuth protected resource metadata (RFC 9728) at /.well-known/oauth-protected-resource
- Streamable HTTP transport (the current MCP standard)

Architecture:
    The flow for every tools/call:

    1. Client sends HTTP request with "Authorization: Bearer <jwt>" header
    2. FastMCP's RequestContextMiddleware stores the HTTP request in a ContextVar
    3. RequestLoggingMiddleware records the call and its outcome
    4. The tool function hands its parameters to the ToolInvoker, which
       validates input, reads the header through get_http_request(), checks
       the scope, acquires the downstream token, calls the Submission API and
       parses the response (see invoker.py)

Running the server:
    python -m submissions_mcp.server

    This starts the server on http://0.0.0.0:7072 with the MCP endpoint at /mcp.
"""

import logging
import time
from typing import Annotated, Any

import httpx
from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import ToolResult
from mcp.shared.auth import ProtectedResourceMetadata
from mcp.types import CallToolRequestParams
from pydantic import Field
from starlette.requests import Request
from starlette.responses import JSONResponse

from submissions_mcp.config import Settings, settings
from submissions_mcp.downstream_token import DelegatedTokenAcquirer
from submissions_mcp.errors import SubmissionsGatewayError
from submissions_mcp.invoker import ToolInvoker
from submissions_mcp.logs import configure_logging
from submissions_mcp.tools import OPERATIONS

logger = logging.getLogger(__name__)


def build_invoker(config: Settings, http_client: httpx.AsyncClient | None = None) -> ToolInvoker:
    """
    Wire the ToolInvoker for a process.

    One httpx client is shared by the token acquirer and the downstream calls.
    """
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=config.http_timeout_seconds)
    acquirer = DelegatedTokenAcquirer(config, http_client)
    return ToolInvoker(
        config,
        http_client=http_client,
        token_acquirer=acquirer,
        request_provider=get_http_request,
    )


invoker = build_invoker(settings)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


def _find_gateway_error(exc: BaseException) -> SubmissionsGatewayError | None:
    # FastMCP re-raises tool exceptions as ToolError with the original as __cause__.
    while exc is not None:
        if isinstance(exc, SubmissionsGatewayError):
            return exc
        exc = exc.__cause__
    return None


class RequestLoggingMiddleware(Middleware):
    """Logs every tools/call with its duration and, on failure, the error type."""

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        tool_name = context.message.name
        started = time.perf_counter()
        try:
            result = await call_next(context)
        except Exception as e:
            error = _find_gateway_error(e)
            logger.warning(
                "Tool call rejected",
                extra={
                    "auth_data": {
                        "tool": tool_name,
                        "error_type": type(error or e).__name__,
                        "status_code": error.status_code if error else None,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    }
                },
            )
            raise
        logger.info(
            "Tool call completed",
            extra={
                "auth_data": {
                    "tool": tool_name,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                }
            },
        )
        return result


mcp = FastMCP(
    name="submissions-mcp",
    instructions=(
        "Access to the Submission API. Look up, list, create and decline "
        "insurance submissions. Every call requires a bearer token carrying "
        "the Submission API scope."
    ),
    middleware=[RequestLoggingMiddleware()],
)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
# Parameters are left unconstrained in the schema so that the invoker's own
# validation produces the typed, parameter-named error.


@mcp.tool(description=OPERATIONS["get_submission"].description)
async def get_submission(
    submission_id: Annotated[int, Field(description="The ID of the submission to retrieve")],
) -> dict[str, Any]:
    return await invoker.invoke(OPERATIONS["get_submission"], {"submission_id": submission_id})


@mcp.tool(description=OPERATIONS["create_submission"].description)
async def create_submission(
    account_id: Annotated[int, Field(description="The account id for the submission")],
    submission_data: Annotated[str, Field(description="The submission data in JSON format")],
) -> dict[str, Any]:
    return await invoker.invoke(
        OPERATIONS["create_submission"],
        {"account_id": account_id, "submission_data": submission_data},
    )


@mcp.tool(description=OPERATIONS["list_submissions"].description)
async def list_submissions(
    account_id: Annotated[int, Field(description="The account id to look for submissions")],
    odata_filter: Annotated[str | None, Field(description="OData filter to apply")] = None,
    odata_select: Annotated[str | None, Field(description="OData projection to apply")] = None,
    limit: Annotated[int, Field(description="Maximum number of submissions to return")] = 10,
) -> dict[str, Any] | list[Any]:
    return await invoker.invoke(
        OPERATIONS["list_submissions"],
        {
            "account_id": account_id,
            "odata_filter": odata_filter,
            "odata_select": odata_select,
            "limit": limit,
        },
    )


@mcp.tool(description=OPERATIONS["decline_submission"].description)
async def decline_submission(
    submission_id: Annotated[int, Field(description="The ID of the submission to be declined")],
    notes: Annotated[str | None, Field(description="Optional notes for the declination")] = None,
) -> dict[str, Any]:
    return await invoker.invoke(
        OPERATIONS["decline_submission"],
        {"submission_id": submission_id, "notes": notes},
    )


# ---------------------------------------------------------------------------
# Protected resource metadata
# ---------------------------------------------------------------------------


def protected_resource_metadata(config: Settings) -> dict[str, Any]:
    """
    Describe this server as an OAuth protected resource.

    Clients use it to discover which identity server issues tokens for us
    and which scopes to ask for. Tokens go in the Authorization header only.
    """
    metadata = ProtectedResourceMetadata(
        resource=config.server_url,
        authorization_servers=[config.identity_server_url],
        scopes_supported=config.scopes_list,
        bearer_methods_supported=["header"],
        resource_documentation=config.resource_documentation_url,
    )
    return metadata.model_dump(mode="json", exclude_none=True)


@mcp.custom_route("/.well-known/oauth-protected-resource", methods=["GET"])
async def oauth_protected_resource(request: Request) -> JSONResponse:
    return JSONResponse(protected_resource_metadata(settings))


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    configure_logging(settings.log_level)
    logger.info(
        "Starting MCP server on %s:%d (transport=streamable-http)",
        settings.host,
        settings.port,
    )
    logger.info("Using identity server: %s", settings.identity_server_url)
    logger.info("Client ID: %s", settings.client_id)
    logger.info("Grant type: %s", settings.grant_type)
    logger.info("Supported scopes: %s", ", ".join(settings.scopes_list))
    logger.info(
        "Submission API: %s (scope: %s)",
        settings.submission_api_base_url,
        settings.submission_api_required_scope,
    )
    logger.info("Protected resource metadata URL: %s", settings.protected_resource_metadata_url)
    mcp.run(
        transport="streamable-http",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
