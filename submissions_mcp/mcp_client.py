"""
Authenticated MCP client for the Submissions MCP server.

Opens a FastMCP Client over Streamable HTTP with the user's current access
token in the Authorization header. The token comes from the
TokenExchangeClient; if there is no fresh token the call fails with
NotAuthenticatedError before any connection is made, and the caller should
send the user through /login again.
"""

import logging
from typing import Any, Callable

from fastmcp import Client
from fastmcp.client.transports import ClientTransport, StreamableHttpTransport
from mcp.types import TextContent, Tool

from submissions_mcp.config import ClientSettings
from submissions_mcp.errors import McpInvocationError, NotAuthenticatedError
from submissions_mcp.token_service import TokenExchangeClient

logger = logging.getLogger(__name__)

NO_RESULT_TEXT = "No result returned"

TransportFactory = Callable[[str], ClientTransport]


class SubmissionsMcpClient:
    def __init__(
        self,
        settings: ClientSettings,
        token_client: TokenExchangeClient,
        transport_factory: TransportFactory | None = None,
    ):
        self._settings = settings
        self._token_client = token_client
        self._transport_factory = transport_factory or self._http_transport

    def _http_transport(self, access_token: str) -> ClientTransport:
        return StreamableHttpTransport(
            self._settings.mcp_server_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def _client(self) -> Client:
        access_token = await self._token_client.get_access_token()
        if not access_token:
            logger.warning("No valid access token available for MCP client creation")
            raise NotAuthenticatedError()

        logger.info(
            "Creating authenticated MCP client",
            extra={"auth_data": {"endpoint": self._settings.mcp_server_url}},
        )
        return Client(self._transport_factory(access_token), timeout=self._settings.timeout_seconds)

    async def list_tools(self) -> list[Tool]:
        client = await self._client()
        try:
            async with client:
                tools = await client.list_tools()
        except Exception as e:
            logger.error("Failed to retrieve available tools from MCP server", exc_info=True)
            raise McpInvocationError(f"Failed to retrieve tools: {e}") from e

        logger.info("Retrieved tools from MCP server", extra={"auth_data": {"tool_count": len(tools)}})
        return tools

    async def call_tool(self, tool_name: str, arguments: dict[str, Any] | None = None) -> str:
        """Invoke a tool and return its first text block."""
        client = await self._client()
        try:
            async with client:
                result = await client.call_tool(tool_name, arguments or {})
        except Exception as e:
            logger.error(
                "Failed to invoke tool",
                exc_info=True,
                extra={"auth_data": {"tool": tool_name}},
            )
            raise McpInvocationError(f"Failed to invoke tool '{tool_name}': {e}") from e

        logger.info("Tool executed", extra={"auth_data": {"tool": tool_name}})
        for block in result.content:
            if isinstance(block, TextContent):
                return block.text
        return NO_RESULT_TEXT
