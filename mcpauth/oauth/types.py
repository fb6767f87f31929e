"""Domain records and wire types for the OAuth server."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class _Expiring(BaseModel):
    """Mixin for records with a wall-clock expiry."""

    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        current = now or utcnow()
        return as_utc(current) > as_utc(self.expires_at)


class User(BaseModel):
    """An upstream identity that has been allowed to use the server."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    github_login: str
    github_id: int
    email: str | None = None
    name: str | None = None
    avatar_url: str | None = None


class RegisteredClient(BaseModel):
    """An OAuth client, registered dynamically or provisioned by an operator."""

    model_config = ConfigDict(from_attributes=True)

    client_id: str
    client_secret_hash: str | None = None
    client_name: str = ""
    client_uri: str | None = None
    logo_uri: str | None = None
    redirect_uris: list[str] = Field(default_factory=list)
    scopes: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "client_secret_post"
    is_static: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    def has_redirect_uri(self, redirect_uri: str) -> bool:
        """Exact-match check against the registered redirect URIs."""
        return redirect_uri in self.redirect_uris


class PendingAuthorizationRequest(_Expiring):
    """An /authorize call waiting for the upstream provider to return."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    redirect_uri: str
    scope: str = ""
    state: str = ""
    code_challenge: str
    code_challenge_method: str = ""
    resource: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class AuthorizationCode(_Expiring):
    """Single-use grant minted after a successful upstream callback."""

    code: str
    client_id: str
    redirect_uri: str
    scope: str = ""
    code_challenge: str
    code_challenge_method: str = ""
    resource: str = ""
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)


class AccessToken(_Expiring):
    """Opaque bearer credential."""

    token: str
    token_type: str = "Bearer"
    client_id: str
    user_id: str
    scope: str = ""
    resource: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class RefreshToken(_Expiring):
    """Long-lived credential, rotated on every use."""

    token: str
    client_id: str
    user_id: str
    scope: str = ""
    resource: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class AuthSession(BaseModel):
    """Persisted binding between a push-channel session and its principal."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    user_id: str
    client_id: str
    access_token_hash: str
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime = Field(default_factory=utcnow)


class TokenResponse(BaseModel):
    """OAuth token endpoint response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str | None = None


class OAuthErrorBody(BaseModel):
    """RFC 6749 error body."""

    error: str
    error_description: str | None = None
    error_uri: str | None = None
