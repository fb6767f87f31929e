"""Shared test fixtures for mcpauth."""

from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from mcpauth.core.app import create_app
from mcpauth.core.settings import AuthSettings, DatabaseSettings
from mcpauth.db.store_sql import SqlAuthStore, create_store
from mcpauth.oauth.service import AuthService
from mcpauth.oauth.types import AccessToken, User
from mcpauth.upstream.github import GitHubClient

ISSUER = "http://localhost:8080"
UPSTREAM_AUTHORIZE_URL = "https://github.test/login/oauth/authorize"
UPSTREAM_TOKEN_URL = "https://github.test/login/oauth/access_token"
UPSTREAM_API_URL = "https://api.github.test"

ALICE = {
    "id": 4242,
    "login": "alice",
    "name": "Alice Liddell",
    "email": "alice@example.com",
    "avatar_url": "https://avatars.test/u/4242",
}


class UpstreamStub:
    """Canned GitHub responses served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, Any]] = {
            "/login/oauth/access_token": (
                200,
                {"access_token": "gh-token", "token_type": "bearer", "scope": ""},
            ),
            "/user": (200, ALICE),
            "/user/orgs": (200, []),
            "/user/teams": (200, []),
        }
        self.requests: list[httpx.Request] = []

    def set(self, path: str, status: int, body: Any) -> None:
        self.routes[path] = (status, body)

    def fail(self, path: str) -> None:
        """Make ``path`` raise a transport error."""
        self.routes[path] = (0, httpx.ConnectError("upstream unreachable"))

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.routes.get(request.url.path, (404, {"message": "Not Found"}))
        if isinstance(body, Exception):
            raise body
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)


@pytest.fixture(autouse=True)
def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host environment out of test settings."""
    for name in ("MCPAUTH_ISSUER_URL", "MCPAUTH_AUTH_ENABLED", "MCPAUTH_ALLOWLIST"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings() -> AuthSettings:
    return AuthSettings(issuer_url=ISSUER, keepalive_interval=0.05)


@pytest.fixture
async def store() -> AsyncIterator[SqlAuthStore]:
    """In-memory SQLite store with tables created."""
    s = create_store(DatabaseSettings(url="sqlite+aiosqlite://"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def upstream_stub() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
async def github(upstream_stub: UpstreamStub) -> AsyncIterator[GitHubClient]:
    gh = GitHubClient(
        "upstream-client-id",
        "upstream-client-secret",
        timeout=5.0,
        authorize_url=UPSTREAM_AUTHORIZE_URL,
        token_url=UPSTREAM_TOKEN_URL,
        api_url=UPSTREAM_API_URL,
        transport=httpx.MockTransport(upstream_stub.handler),
    )
    yield gh
    await gh.aclose()


@pytest.fixture
def app(settings: AuthSettings, store: SqlAuthStore, github: GitHubClient) -> FastAPI:
    return create_app(settings=settings, store=store, upstream=github)


@pytest.fixture
def svc(app: FastAPI) -> AuthService:
    return app.state.auth_service


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """httpx client bound to the app; redirects are not followed."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def user(store: SqlAuthStore) -> User:
    """A stored user."""
    u = User(
        id="user-alice",
        github_login="alice",
        github_id=4242,
        email="alice@example.com",
        name="Alice Liddell",
    )
    await store.store_user(u)
    return u


@pytest.fixture
async def access_token(svc: AuthService, user: User) -> AccessToken:
    return await svc.tokens.issue_access_token(user.id, "client-1", "mcp:tools")


@pytest.fixture
def auth_headers(access_token: AccessToken) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token.token}"}
