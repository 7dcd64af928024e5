"""
Typed errors raised by the gateway.

Every tool invocation either returns the operation's result or fails with
exactly one of these. They follow the same shape as a plain auth error: a
human-readable message plus an HTTP-style status code for logging and
transport mapping. FastMCP turns a raised error into an MCP tool result with
isError=true and the message as its text content.

Messages never include raw credential values.
"""


class SubmissionsGatewayError(Exception):
    """
    Base class for all gateway errors.

    Attributes:
        message: Human-readable error description
        status_code: HTTP status code that best describes the failure
    """

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


# ---------------------------------------------------------------------------
# Caller-side failures (never retried)
# ---------------------------------------------------------------------------


class ValidationError(SubmissionsGatewayError):
    """A tool parameter failed its contract. Raised before any auth or network step."""

    status_code = 400

    def __init__(self, param_name: str, message: str):
        self.param_name = param_name
        super().__init__(f"Invalid parameter '{param_name}': {message}")


class AuthenticationContextUnavailable(SubmissionsGatewayError):
    """There is no inbound HTTP request to read credentials from (e.g. stdio transport)."""

    status_code = 401

    def __init__(self, message: str = "HTTP context not available"):
        super().__init__(message)


class MissingOrMalformedCredential(SubmissionsGatewayError):
    """The Authorization header is missing or is not 'Bearer <token>'."""

    status_code = 401

    def __init__(self, message: str = "No valid bearer token found in request"):
        super().__init__(message)


class InsufficientScopeOrExpiredToken(SubmissionsGatewayError):
    """The bearer token is expired, unreadable, or lacks the required scope."""

    status_code = 403

    def __init__(self, required_scope: str):
        self.required_scope = required_scope
        super().__init__(
            f"Access denied: token is expired or lacks required scope '{required_scope}'"
        )


# ---------------------------------------------------------------------------
# Identity provider failures
# ---------------------------------------------------------------------------


class AuthenticationFailed(SubmissionsGatewayError):
    """
    The identity provider rejected an authentication attempt.

    Raised to a login waiter when the OAuth callback carries an error, and
    used as the base for delegated token failures. `provider_error` holds
    the provider's own error text.
    """

    status_code = 401

    def __init__(self, provider_error: str, description: str | None = None):
        self.provider_error = provider_error
        self.description = description
        message = f"Authentication failed: {provider_error}"
        if description:
            message = f"{message} - {description}"
        super().__init__(message)


class TokenAcquisitionError(AuthenticationFailed):
    """The client_credentials exchange for the downstream API failed."""


class UpstreamAuthenticationFailure(SubmissionsGatewayError):
    """Caller-safe form of a TokenAcquisitionError. Carries no provider internals."""

    status_code = 502

    def __init__(self, message: str = "Failed to obtain credentials for the Submission API"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Downstream API failures (surfaced verbatim)
# ---------------------------------------------------------------------------


class DownstreamHttpError(SubmissionsGatewayError):
    """The Submission API answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        self.body = body
        super().__init__(
            f"Submission API call failed: {status_code} - {body}",
            status_code=status_code,
        )


class DownstreamTransportError(SubmissionsGatewayError):
    """The Submission API could not be reached (timeout, connection refused, ...)."""

    status_code = 504


class ResponseParseError(SubmissionsGatewayError):
    """
    A 2xx response body could not be parsed into the operation's result shape.

    Always raised with `raise ... from exc` so the original parsing exception
    stays available as __cause__.
    """

    status_code = 502


# ---------------------------------------------------------------------------
# MCP client failures
# ---------------------------------------------------------------------------


class NotAuthenticatedError(SubmissionsGatewayError):
    """The MCP client has no fresh access token; the user has to log in first."""

    status_code = 401

    def __init__(self, message: str = "No valid access token available. Please authenticate first."):
        super().__init__(message)


class McpInvocationError(SubmissionsGatewayError):
    """Listing or calling tools on the MCP server failed."""

    status_code = 502
