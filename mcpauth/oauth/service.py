"""The authorization server's collaborators, bundled for the routes."""

import logging
from datetime import datetime
from typing import Annotated

import uuid_utils
from fastapi import Depends, Request

from mcpauth.core.settings import AuthSettings
from mcpauth.crypto.hashing import hash_secret, verify_secret
from mcpauth.db.store import AuthStore, ClientNotFoundError
from mcpauth.oauth.discovery import PROTECTED_RESOURCE_METADATA_PATH
from mcpauth.oauth.policy import AllowlistPolicy
from mcpauth.oauth.token_service import TokenService, generate_client_credentials
from mcpauth.oauth.types import RegisteredClient, User, as_utc, utcnow
from mcpauth.upstream.github import GitHubClient, GitHubUser

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/callback"


class NewClient(RegisteredClient):
    """A just-created client together with its one-time plaintext secret."""

    client_secret: str


class AuthService:
    """Settings, store, token service, upstream client and policy."""

    def __init__(
        self,
        settings: AuthSettings,
        store: AuthStore,
        upstream: GitHubClient,
        policy: AllowlistPolicy | None = None,
        tokens: TokenService | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.upstream = upstream
        self.policy = policy or AllowlistPolicy(settings.allowlist, upstream)
        self.tokens = tokens or TokenService(
            store,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            code_ttl=settings.auth_code_ttl,
        )

    @property
    def callback_url(self) -> str:
        return f"{self.settings.issuer}{CALLBACK_PATH}"

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.settings.issuer}{PROTECTED_RESOURCE_METADATA_PATH}"

    async def provision_static_clients(self) -> None:
        """Write operator-configured clients to the store."""
        for cfg in self.settings.static_clients:
            await self.store.store_client(
                RegisteredClient(
                    client_id=cfg.client_id,
                    client_secret_hash=hash_secret(cfg.client_secret),
                    client_name=cfg.name,
                    redirect_uris=cfg.redirect_uris,
                    scopes=cfg.scopes,
                    is_static=True,
                )
            )
            logger.info("provisioned static client %s", cfg.client_id)

    async def create_client(
        self,
        *,
        redirect_uris: list[str],
        client_name: str = "",
        client_uri: str | None = None,
        logo_uri: str | None = None,
        scopes: list[str] | None = None,
        is_static: bool = False,
    ) -> NewClient:
        """Generate credentials and persist a new client."""
        creds = generate_client_credentials()
        client = RegisteredClient(
            client_id=creds.client_id,
            client_secret_hash=hash_secret(creds.client_secret),
            client_name=client_name,
            client_uri=client_uri,
            logo_uri=logo_uri,
            redirect_uris=redirect_uris,
            scopes=scopes or [],
            is_static=is_static,
        )
        await self.store.store_client(client)
        logger.info("registered client %s (static=%s)", client.client_id, is_static)
        return NewClient(**client.model_dump(), client_secret=creds.client_secret)

    async def verify_client_secret(self, client_id: str, client_secret: str) -> bool:
        try:
            client = await self.store.get_client(client_id)
        except ClientNotFoundError:
            return False
        if not client.client_secret_hash:
            return False
        return verify_secret(client_secret, client.client_secret_hash)

    async def upsert_user(self, gh_user: GitHubUser) -> User:
        """Create or refresh the local user for an upstream identity."""
        candidate = User(
            id=str(uuid_utils.uuid7()),
            github_login=gh_user.login,
            github_id=gh_user.id,
            email=gh_user.email,
            name=gh_user.name,
            avatar_url=gh_user.avatar_url,
        )
        user = await self.store.get_or_create_user(candidate)
        if user.id == candidate.id:
            logger.info("created user %s for upstream login %s", user.id, gh_user.login)
        return user

    def expires_in(self, expires_at: datetime) -> int:
        """Seconds from now until ``expires_at``, rounded to the nearest second."""
        return max(0, round((as_utc(expires_at) - utcnow()).total_seconds()))


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
