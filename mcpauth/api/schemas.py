"""Request and response bodies for client registration and administration."""

from pydantic import BaseModel, Field, field_validator


def _split_scope(value: object) -> object:
    """Accept RFC 7591 space-delimited scope strings as well as lists."""
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    return value


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 client metadata."""

    redirect_uris: list[str] = Field(default_factory=list)
    client_name: str = ""
    client_uri: str | None = None
    logo_uri: str | None = None
    scope: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(default_factory=list)
    response_types: list[str] = Field(default_factory=list)
    token_endpoint_auth_method: str | None = None

    @field_validator("scope", mode="before")
    @classmethod
    def normalize_scope(cls, value: object) -> object:
        return _split_scope(value)


class ClientRegistrationResponse(BaseModel):
    """RFC 7591 registration response; the only place the secret appears."""

    client_id: str
    client_secret: str
    client_name: str = ""
    client_uri: str | None = None
    logo_uri: str | None = None
    redirect_uris: list[str]
    grant_types: list[str]
    response_types: list[str]
    token_endpoint_auth_method: str
    client_id_issued_at: int


class StaticClientCreateRequest(BaseModel):
    """Body for POST /admin/clients."""

    client_name: str = ""
    redirect_uris: list[str] = Field(default_factory=list)
    scopes: list[str] = Field(default_factory=list)

    @field_validator("scopes", mode="before")
    @classmethod
    def normalize_scope(cls, value: object) -> object:
        return _split_scope(value)


class StaticClientResponse(BaseModel):
    """An operator-managed client; ``client_secret`` is set only on creation."""

    client_id: str
    client_secret: str | None = None
    client_name: str
    redirect_uris: list[str]
    scopes: list[str] = Field(default_factory=list)
    created_at: str
