"""
Tool invocation pipeline.

Every MCP tool call goes through the same strictly ordered steps:

    ValidatingInput -> ExtractingCredential -> ValidatingScope
        -> AcquiringDownstreamToken -> CallingDownstream -> ParsingResponse
        -> Success | Failed

Input validation always comes first, so a bad parameter never reaches the
auth layer or the network. The caller's token is only used to decide whether
the call is allowed; the downstream call uses the server's own delegated
token.

There are no retries here: one downstream failure is one reported failure.
Cancellation of the tool call propagates straight into the downstream
request.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

import httpx

from submissions_mcp.auth import BearerTokenExtractor, ScopeValidator
from submissions_mcp.config import Settings
from submissions_mcp.downstream_token import DelegatedTokenAcquirer
from submissions_mcp.errors import (
    DownstreamHttpError,
    DownstreamTransportError,
    InsufficientScopeOrExpiredToken,
    SubmissionsGatewayError,
    TokenAcquisitionError,
    UpstreamAuthenticationFailure,
)
from submissions_mcp.tools import SubmissionOperation

logger = logging.getLogger(__name__)


class InvocationState(str, Enum):
    VALIDATING_INPUT = "ValidatingInput"
    EXTRACTING_CREDENTIAL = "ExtractingCredential"
    VALIDATING_SCOPE = "ValidatingScope"
    ACQUIRING_DOWNSTREAM_TOKEN = "AcquiringDownstreamToken"
    CALLING_DOWNSTREAM = "CallingDownstream"
    PARSING_RESPONSE = "ParsingResponse"
    SUCCESS = "Success"
    FAILED = "Failed"


@dataclass
class ToolInvocationContext:
    """Per-call scratch state. Tokens are excluded from repr so they never hit logs."""

    tool_name: str
    parameters: Mapping[str, Any]
    request_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: InvocationState = InvocationState.VALIDATING_INPUT
    incoming_token: str | None = field(default=None, repr=False)
    downstream_token: str | None = field(default=None, repr=False)

    def log_data(self, **extra: Any) -> dict:
        return {
            "auth_data": {
                "request_id": self.request_id,
                "tool": self.tool_name,
                "state": self.state.value,
                **extra,
            }
        }


class ToolInvoker:
    """
    Runs one Submission API operation behind the authentication pipeline.

    Collaborators are injected so each step can be replaced in tests:
    `request_provider` returns the active inbound HTTP request (FastMCP's
    get_http_request in production) and `http_client` is the downstream
    client.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        token_acquirer: DelegatedTokenAcquirer,
        request_provider: Callable[[], Any],
        extractor: BearerTokenExtractor | None = None,
        scope_validator: ScopeValidator | None = None,
    ):
        self._settings = settings
        self._http = http_client
        self._acquirer = token_acquirer
        self._request_provider = request_provider
        self._extractor = extractor or BearerTokenExtractor()
        self._scope_validator = scope_validator or ScopeValidator()
        self.required_scope = settings.submission_api_required_scope

    def _url(self, path: str) -> str:
        return f"{self._settings.submission_api_base_url.rstrip('/')}/{path.lstrip('/')}"

    async def invoke(self, operation: SubmissionOperation, parameters: Mapping[str, Any]) -> Any:
        ctx = ToolInvocationContext(tool_name=operation.name, parameters=parameters)
        try:
            result = await self._run(operation, ctx)
        except SubmissionsGatewayError as e:
            failed_in = ctx.state
            ctx.state = InvocationState.FAILED
            logger.warning(
                "Tool call failed",
                extra=ctx.log_data(
                    failed_in=failed_in.value,
                    error_type=type(e).__name__,
                    status_code=e.status_code,
                ),
            )
            raise
        ctx.state = InvocationState.SUCCESS
        logger.info("Tool call succeeded", extra=ctx.log_data())
        return result

    async def _run(self, operation: SubmissionOperation, ctx: ToolInvocationContext) -> Any:
        # Step 1: parameter contract, before anything touches auth or network
        ctx.state = InvocationState.VALIDATING_INPUT
        operation.validate(ctx.parameters)

        # Step 2: caller's bearer token
        ctx.state = InvocationState.EXTRACTING_CREDENTIAL
        ctx.incoming_token = self._extractor.extract_from_request(self._request_provider)

        # Step 3: offline scope check
        ctx.state = InvocationState.VALIDATING_SCOPE
        if not self._scope_validator.has_required_scope(ctx.incoming_token, self.required_scope):
            raise InsufficientScopeOrExpiredToken(self.required_scope)
        logger.info("Tool call authorized", extra=ctx.log_data(required_scope=self.required_scope))

        # Step 4: server's own Submission API token
        ctx.state = InvocationState.ACQUIRING_DOWNSTREAM_TOKEN
        try:
            ctx.downstream_token = await self._acquirer.acquire()
        except TokenAcquisitionError as e:
            raise UpstreamAuthenticationFailure() from e

        # Step 5: one downstream request
        ctx.state = InvocationState.CALLING_DOWNSTREAM
        request = operation.build_request(ctx.parameters)
        headers = {
            "Authorization": f"Bearer {ctx.downstream_token}",
            "User-Agent": self._settings.user_agent,
            "Accept": "application/json",
        }
        if request.content is not None:
            headers["Content-Type"] = "application/json"
        try:
            response = await self._http.request(
                request.method,
                self._url(request.path),
                headers=headers,
                json=request.json_body,
                content=request.content,
                timeout=self._settings.http_timeout_seconds,
            )
        except httpx.TransportError as e:
            raise DownstreamTransportError(
                f"Submission API unreachable: {type(e).__name__}: {e}"
            ) from e

        # Step 6: classify and parse
        ctx.state = InvocationState.PARSING_RESPONSE
        if not response.is_success:
            if response.status_code == 401:
                # The cached token was revoked or rotated; the next call asks for a new one.
                self._acquirer.invalidate()
            raise DownstreamHttpError(response.status_code, response.text)
        return operation.parse(response.text)
