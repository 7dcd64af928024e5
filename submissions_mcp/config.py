"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that automatically reads
from environment variables. All config comes from the environment (or a local
.env file), never hardcoded in source code.

Two settings classes live here:
- Settings: the MCP server (identity server client, Submission API target)
- ClientSettings: the MCP client that logs users in with Authorization Code + PKCE

Both validate themselves at construction time. A missing or malformed value
raises pydantic's ValidationError listing every problem at once, so a
misconfigured process fails on startup instead of on the first tool call.
"""

from typing import ClassVar
from urllib.parse import urlparse

from pydantic import field_validator
from pydantic_settings import BaseSettings

VALID_GRANT_TYPES = ("authorization_code", "client_credentials", "password")
VALID_RESPONSE_MODES = ("query", "fragment", "form_post")


def _require_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be a valid absolute http(s) URL")
    return value


def _require_non_blank(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("is required")
    return value


class _IdentityServerSettings(BaseSettings):
    """Fields shared by the server and the client: where the identity server lives."""

    # Base URL of the identity provider. /connect/authorize and /connect/token
    # are derived from it.
    identity_server_url: str = "https://identity.example.com"

    client_id: str = "submissions-mcp"

    # Injected from a secret store in production. The default is for local
    # development only.
    client_secret: str = "dev-secret-change-me"

    # Grant types this process can actually perform. Subclasses narrow it.
    supported_grant_types: ClassVar[tuple[str, ...]] = VALID_GRANT_TYPES

    grant_type: str = "client_credentials"

    # Space-separated, exactly as sent in the OAuth "scope" parameter.
    scopes: str = "submission-api"

    @field_validator("identity_server_url")
    @classmethod
    def _check_identity_url(cls, value: str) -> str:
        return _require_http_url(value)

    @field_validator("client_id", "client_secret", "scopes")
    @classmethod
    def _check_required(cls, value: str) -> str:
        return _require_non_blank(value)

    @field_validator("grant_type")
    @classmethod
    def _check_grant_type(cls, value: str) -> str:
        if value not in cls.supported_grant_types:
            raise ValueError(f"must be one of: {', '.join(cls.supported_grant_types)}")
        return value

    @property
    def token_endpoint(self) -> str:
        return f"{self.identity_server_url.rstrip('/')}/connect/token"

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.identity_server_url.rstrip('/')}/connect/authorize"

    @property
    def scopes_list(self) -> list[str]:
        return self.scopes.split()


class Settings(_IdentityServerSettings):
    """
    MCP server configuration with environment variable bindings.

    Each field maps to an environment variable with the MCP_ prefix.
    For example, `port` reads from MCP_PORT and `submission_api_base_url`
    reads from MCP_SUBMISSION_API_BASE_URL.
    """

    supported_grant_types: ClassVar[tuple[str, ...]] = ("client_credentials",)

    # --- Server settings ---

    # "0.0.0.0" listens on all interfaces, which is required inside containers.
    host: str = "0.0.0.0"
    port: int = 7072
    log_level: str = "info"

    # Public URL of this MCP server. Published as the "resource" in the
    # protected resource metadata.
    server_url: str = "http://localhost:7072/"

    resource_documentation_url: str | None = None

    # --- Submission API (downstream) ---

    submission_api_base_url: str = "https://submission-api.example.com/"

    # Scope a caller's token must carry before any tool runs. Also the scope
    # requested for the delegated downstream token.
    submission_api_required_scope: str = "submission-api"

    # Sent as "User-Agent: <product>/<version>" on every downstream call.
    submission_api_user_agent: str = "mcp-submission-client"
    submission_api_version: str = "1.0"

    # --- Token handling ---

    http_timeout_seconds: float = 30.0

    # A cached token is only handed out while it has more than this many
    # seconds left.
    token_refresh_margin_seconds: int = 300

    model_config = {
        "env_prefix": "MCP_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("server_url", "submission_api_base_url")
    @classmethod
    def _check_urls(cls, value: str) -> str:
        return _require_http_url(value)

    @field_validator("submission_api_required_scope", "submission_api_user_agent")
    @classmethod
    def _check_submission_api_required(cls, value: str) -> str:
        return _require_non_blank(value)

    @field_validator("http_timeout_seconds")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    @field_validator("token_refresh_margin_seconds")
    @classmethod
    def _check_margin(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("resource_documentation_url")
    @classmethod
    def _check_documentation_url(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return _require_http_url(value)

    @property
    def protected_resource_metadata_url(self) -> str:
        return f"{self.server_url.rstrip('/')}/.well-known/oauth-protected-resource"

    @property
    def user_agent(self) -> str:
        return f"{self.submission_api_user_agent}/{self.submission_api_version}"


class ClientSettings(_IdentityServerSettings):
    """
    MCP client configuration (MCP_CLIENT_ prefix).

    The client logs the user in with Authorization Code + PKCE and then calls
    the MCP server with the resulting access token.
    """

    supported_grant_types: ClassVar[tuple[str, ...]] = ("authorization_code",)

    host: str = "127.0.0.1"
    port: int = 7071
    log_level: str = "info"

    grant_type: str = "authorization_code"
    scopes: str = "openid profile submission-api"

    # Streamable HTTP endpoint of the MCP server.
    mcp_server_url: str = "http://localhost:7072/mcp"

    # Must be registered with the identity server for this client.
    redirect_uri: str = "http://localhost:7071/oauth/callback"

    # Empty means "let the provider decide".
    response_mode: str = "query"

    timeout_seconds: float = 30.0

    # Pending logins older than this are dropped.
    pending_ttl_seconds: float = 600.0

    token_refresh_margin_seconds: int = 300

    model_config = {
        "env_prefix": "MCP_CLIENT_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("mcp_server_url", "redirect_uri")
    @classmethod
    def _check_urls(cls, value: str) -> str:
        return _require_http_url(value)

    @field_validator("response_mode")
    @classmethod
    def _check_response_mode(cls, value: str) -> str:
        if value and value not in VALID_RESPONSE_MODES:
            raise ValueError(f"must be one of: {', '.join(VALID_RESPONSE_MODES)}")
        return value

    @field_validator("timeout_seconds", "pending_ttl_seconds")
    @classmethod
    def _check_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value


# Singleton instance for the server process: import this from other modules.
# Created once at module load time, reads environment variables immediately.
settings = Settings()
