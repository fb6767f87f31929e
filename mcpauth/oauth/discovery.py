"""RFC 8414 and RFC 9728 metadata documents."""

from pydantic import BaseModel

from mcpauth.core.settings import AuthSettings

SCOPES_SUPPORTED = ["mcp:tools", "mcp:resources", "mcp:prompts"]
PROTECTED_RESOURCE_PATH = "/mcp"
PROTECTED_RESOURCE_METADATA_PATH = "/.well-known/oauth-protected-resource"
AUTH_SERVER_METADATA_PATH = "/.well-known/oauth-authorization-server"


class AuthorizationServerMetadata(BaseModel):
    """/.well-known/oauth-authorization-server response."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str
    scopes_supported: list[str]
    response_types_supported: list[str]
    grant_types_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    code_challenge_methods_supported: list[str]
    require_pkce: bool = True


class ProtectedResourceMetadata(BaseModel):
    """/.well-known/oauth-protected-resource response."""

    resource: str
    authorization_servers: list[str]
    scopes_supported: list[str]
    bearer_methods_supported: list[str]


def build_authorization_server_metadata(
    settings: AuthSettings,
) -> AuthorizationServerMetadata:
    issuer = settings.issuer
    return AuthorizationServerMetadata(
        issuer=issuer,
        authorization_endpoint=f"{issuer}/authorize",
        token_endpoint=f"{issuer}/token",
        registration_endpoint=f"{issuer}/register",
        scopes_supported=SCOPES_SUPPORTED,
        response_types_supported=["code"],
        grant_types_supported=["authorization_code", "refresh_token"],
        token_endpoint_auth_methods_supported=["client_secret_post", "none"],
        code_challenge_methods_supported=["S256"],
    )


def build_protected_resource_metadata(
    settings: AuthSettings,
) -> ProtectedResourceMetadata:
    issuer = settings.issuer
    return ProtectedResourceMetadata(
        resource=f"{issuer}{PROTECTED_RESOURCE_PATH}",
        authorization_servers=[issuer],
        scopes_supported=SCOPES_SUPPORTED,
        bearer_methods_supported=["header"],
    )
