"""Application settings loaded from environment variables."""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ACCESS_TOKEN_TTL_DEFAULT = 3600
REFRESH_TOKEN_TTL_DEFAULT = 2_592_000
AUTH_CODE_TTL_DEFAULT = 600
AUTH_REQUEST_TTL_DEFAULT = 600
HTTP_TIMEOUT_DEFAULT = 30.0
KEEPALIVE_INTERVAL_DEFAULT = 30.0
SESSION_QUEUE_SIZE_DEFAULT = 10
HTTP_PORT_DEFAULT = 8080

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"


class DatabaseSettings(BaseSettings):
    """Embedded store connection settings."""

    model_config = SettingsConfigDict(env_prefix="MCPAUTH_DB_")

    url: str = "sqlite+aiosqlite:///./mcpauth.db"
    echo: bool = False


class GitHubSettings(BaseSettings):
    """Upstream GitHub OAuth app credentials and endpoints."""

    model_config = SettingsConfigDict(env_prefix="MCPAUTH_GITHUB_")

    client_id: str = ""
    client_secret: str = ""
    client_id_file: Path | None = None
    client_secret_file: Path | None = None
    authorize_url: str = GITHUB_AUTHORIZE_URL
    token_url: str = GITHUB_TOKEN_URL
    api_url: str = GITHUB_API_URL

    def resolved_client_id(self) -> str:
        """Client ID, preferring a mounted secret file when configured."""
        if self.client_id_file is not None:
            return self.client_id_file.read_text().strip()
        return self.client_id

    def resolved_client_secret(self) -> str:
        """Client secret, preferring a mounted secret file when configured."""
        if self.client_secret_file is not None:
            return self.client_secret_file.read_text().strip()
        return self.client_secret


class TeamRef(BaseModel):
    """An organization/team pair. ``team`` is the slug, not the display name."""

    org: str
    team: str


class AllowlistSettings(BaseModel):
    """Who may use the server once authenticated upstream."""

    users: list[str] = Field(default_factory=list)
    orgs: list[str] = Field(default_factory=list)
    teams: list[TeamRef] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.users or self.orgs or self.teams)


class StaticClientSettings(BaseModel):
    """An operator-provisioned OAuth client."""

    client_id: str
    client_secret: str
    name: str
    redirect_uris: list[str]
    scopes: list[str] = Field(default_factory=list)


class AuthSettings(BaseSettings):
    """OAuth server, session and transport settings."""

    model_config = SettingsConfigDict(
        env_prefix="MCPAUTH_",
        env_nested_delimiter="__",
    )

    issuer_url: str = "http://localhost:8080"
    auth_enabled: bool = True
    cors_origins: str = ""
    access_token_ttl: int = ACCESS_TOKEN_TTL_DEFAULT
    refresh_token_ttl: int = REFRESH_TOKEN_TTL_DEFAULT
    auth_code_ttl: int = AUTH_CODE_TTL_DEFAULT
    auth_request_ttl: int = AUTH_REQUEST_TTL_DEFAULT
    http_timeout: float = HTTP_TIMEOUT_DEFAULT
    allowlist: AllowlistSettings = Field(default_factory=AllowlistSettings)
    static_clients: list[StaticClientSettings] = Field(default_factory=list)
    session_queue_size: int = SESSION_QUEUE_SIZE_DEFAULT
    keepalive_interval: float = KEEPALIVE_INTERVAL_DEFAULT
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = HTTP_PORT_DEFAULT

    @property
    def issuer(self) -> str:
        """Issuer URL without a trailing slash."""
        return self.issuer_url.rstrip("/")

    def get_cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins."""
        if not self.cors_origins:
            return []
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
