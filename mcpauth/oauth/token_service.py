"""Issuance and validation of codes, access tokens and refresh tokens."""

import secrets
from datetime import timedelta

from pydantic import BaseModel

from mcpauth.core.settings import (
    ACCESS_TOKEN_TTL_DEFAULT,
    AUTH_CODE_TTL_DEFAULT,
    REFRESH_TOKEN_TTL_DEFAULT,
)
from mcpauth.db.store import AuthStore, StoreError
from mcpauth.oauth.types import (
    AccessToken,
    AuthorizationCode,
    RefreshToken,
    utcnow,
)

TOKEN_BYTES = 32
CLIENT_ID_BYTES = 16
CLIENT_SECRET_BYTES = 32


class TokenExpiredError(StoreError):
    """The token exists but is past its expiry."""


class ClientCredentials(BaseModel):
    """Freshly generated client credentials; the secret is shown once."""

    client_id: str
    client_secret: str


class TokenPair(BaseModel):
    """Access and refresh token minted together."""

    access_token: AccessToken
    refresh_token: RefreshToken


def generate_secure_token(nbytes: int = TOKEN_BYTES) -> str:
    """URL-safe random token with ``nbytes`` bytes of entropy."""
    return secrets.token_urlsafe(nbytes)


def generate_client_credentials() -> ClientCredentials:
    return ClientCredentials(
        client_id=generate_secure_token(CLIENT_ID_BYTES),
        client_secret=generate_secure_token(CLIENT_SECRET_BYTES),
    )


class TokenService:
    """Mints and persists credentials; validates bearer tokens."""

    def __init__(
        self,
        store: AuthStore,
        access_ttl: int = ACCESS_TOKEN_TTL_DEFAULT,
        refresh_ttl: int = REFRESH_TOKEN_TTL_DEFAULT,
        code_ttl: int = AUTH_CODE_TTL_DEFAULT,
    ) -> None:
        self.store = store
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.code_ttl = code_ttl

    async def issue_access_token(
        self, user_id: str, client_id: str, scope: str = "", resource: str = ""
    ) -> AccessToken:
        now = utcnow()
        token = AccessToken(
            token=generate_secure_token(),
            client_id=client_id,
            user_id=user_id,
            scope=scope,
            resource=resource,
            created_at=now,
            expires_at=now + timedelta(seconds=self.access_ttl),
        )
        await self.store.store_access_token(token)
        return token

    async def issue_refresh_token(
        self, user_id: str, client_id: str, scope: str = "", resource: str = ""
    ) -> RefreshToken:
        now = utcnow()
        token = RefreshToken(
            token=generate_secure_token(),
            client_id=client_id,
            user_id=user_id,
            scope=scope,
            resource=resource,
            created_at=now,
            expires_at=now + timedelta(seconds=self.refresh_ttl),
        )
        await self.store.store_refresh_token(token)
        return token

    async def issue_token_pair(
        self, user_id: str, client_id: str, scope: str = "", resource: str = ""
    ) -> TokenPair:
        """Mint an access token and a refresh token with the same grant."""
        access = await self.issue_access_token(user_id, client_id, scope, resource)
        refresh = await self.issue_refresh_token(user_id, client_id, scope, resource)
        return TokenPair(access_token=access, refresh_token=refresh)

    async def issue_authorization_code(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        scope: str,
        code_challenge: str,
        code_challenge_method: str,
        resource: str,
        user_id: str,
    ) -> AuthorizationCode:
        now = utcnow()
        code = AuthorizationCode(
            code=generate_secure_token(),
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            resource=resource,
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=self.code_ttl),
        )
        await self.store.store_auth_code(code)
        return code

    async def validate_access_token(self, token: str) -> AccessToken:
        """Look up a bearer token.

        Raises ``TokenNotFoundError`` for unknown tokens and
        ``TokenExpiredError`` once ``expires_at`` has passed.
        """
        access = await self.store.get_access_token(token)
        if access.is_expired():
            raise TokenExpiredError("access token expired")
        return access
