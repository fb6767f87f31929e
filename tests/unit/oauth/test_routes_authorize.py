"""Tests for /authorize and the upstream /callback."""

import hashlib
from base64 import urlsafe_b64encode
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest
from httpx import AsyncClient

from mcpauth.core.settings import AllowlistSettings
from mcpauth.db.store_sql import SqlAuthStore
from mcpauth.oauth.policy import AllowlistPolicy
from mcpauth.oauth.service import AuthService
from mcpauth.oauth.types import PendingAuthorizationRequest, RegisteredClient, utcnow
from tests.conftest import UpstreamStub

CLIENT_ID = "authz-client-1"
REDIRECT_URI = "http://localhost:3000/callback"
VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


def _make_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _query(location: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}


def _params(**overrides: str) -> dict[str, str]:
    params = {
        "client_id": CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "response_type": "code",
        "scope": "mcp:tools",
        "state": "client-state",
        "code_challenge": _make_challenge(VERIFIER),
        "code_challenge_method": "S256",
        "resource": "http://localhost:8080/mcp",
    }
    params.update(overrides)
    return params


@pytest.fixture
async def oauth_client(store: SqlAuthStore) -> RegisteredClient:
    client = RegisteredClient(
        client_id=CLIENT_ID,
        client_name="Authorize Test App",
        redirect_uris=[REDIRECT_URI],
    )
    await store.store_client(client)
    return client


async def _pending(
    store: SqlAuthStore, request_id: str = "req-1", **overrides: object
) -> None:
    now = utcnow()
    fields = {
        "id": request_id,
        "client_id": CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "scope": "mcp:tools",
        "state": "client-state",
        "code_challenge": _make_challenge(VERIFIER),
        "code_challenge_method": "S256",
        "resource": "http://localhost:8080/mcp",
        "created_at": now,
        "expires_at": now + timedelta(minutes=10),
    }
    fields.update(overrides)
    await store.store_auth_request(PendingAuthorizationRequest(**fields))


class TestAuthorize:
    """Tests for GET/POST /authorize."""

    async def test_redirects_to_upstream(
        self,
        client: AsyncClient,
        oauth_client: RegisteredClient,
        store: SqlAuthStore,
    ) -> None:
        resp = await client.get("/authorize", params=_params())
        assert resp.status_code == 302

        location = resp.headers["location"]
        assert location.startswith("https://github.test/login/oauth/authorize?")
        query = _query(location)
        assert query["redirect_uri"] == "http://localhost:8080/callback"
        assert query["scope"] == "read:user read:org"

        pending = await store.get_auth_request(query["state"])
        assert pending.client_id == CLIENT_ID
        assert pending.state == "client-state"
        assert pending.resource == "http://localhost:8080/mcp"
        assert pending.expires_at - pending.created_at == timedelta(seconds=600)

    async def test_post_form(
        self, client: AsyncClient, oauth_client: RegisteredClient
    ) -> None:
        resp = await client.post("/authorize", data=_params())
        assert resp.status_code == 302
        assert "github.test" in resp.headers["location"]

    async def test_wrong_response_type_redirects_error(
        self, client: AsyncClient, oauth_client: RegisteredClient
    ) -> None:
        resp = await client.get("/authorize", params=_params(response_type="token"))
        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith(REDIRECT_URI)
        query = _query(location)
        assert query["error"] == "unsupported_response_type"
        assert query["state"] == "client-state"

    async def test_missing_challenge_redirects_error(
        self, client: AsyncClient, oauth_client: RegisteredClient
    ) -> None:
        resp = await client.get("/authorize", params=_params(code_challenge=""))
        assert resp.status_code == 302
        assert _query(resp.headers["location"])["error"] == "invalid_request"

    async def test_short_s256_challenge(
        self, client: AsyncClient, oauth_client: RegisteredClient
    ) -> None:
        resp = await client.get("/authorize", params=_params(code_challenge="abc"))
        assert _query(resp.headers["location"])["error"] == "invalid_request"

    async def test_unknown_client_is_json(self, client: AsyncClient) -> None:
        resp = await client.get("/authorize", params=_params(client_id="nobody"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_client"

    async def test_unregistered_redirect_is_json(
        self, client: AsyncClient, oauth_client: RegisteredClient
    ) -> None:
        resp = await client.get(
            "/authorize", params=_params(redirect_uri="https://evil.example/cb")
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    async def test_unregistered_redirect_never_receives_errors(
        self, client: AsyncClient, oauth_client: RegisteredClient
    ) -> None:
        resp = await client.get(
            "/authorize",
            params=_params(redirect_uri="https://evil.example/cb", response_type="x"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupported_response_type"

    async def test_response_type_checked_before_client(
        self, client: AsyncClient
    ) -> None:
        resp = await client.get(
            "/authorize", params=_params(client_id="nobody", response_type="token")
        )
        assert resp.json()["error"] == "unsupported_response_type"


class TestCallback:
    """Tests for GET /callback."""

    async def test_success_issues_code(
        self,
        client: AsyncClient,
        oauth_client: RegisteredClient,
        store: SqlAuthStore,
    ) -> None:
        await _pending(store)
        resp = await client.get("/callback", params={"code": "gh-code", "state": "req-1"})
        assert resp.status_code == 302

        location = resp.headers["location"]
        assert location.startswith(REDIRECT_URI + "?")
        query = _query(location)
        assert query["state"] == "client-state"

        code = await store.get_auth_code(query["code"])
        assert code.client_id == CLIENT_ID
        assert code.resource == "http://localhost:8080/mcp"
        user = await store.get_user(code.user_id)
        assert user.github_login == "alice"
        assert user.github_id == 4242

    async def test_pending_request_is_single_use(
        self, client: AsyncClient, oauth_client: RegisteredClient, store: SqlAuthStore
    ) -> None:
        await _pending(store)
        first = await client.get("/callback", params={"code": "gh-code", "state": "req-1"})
        assert first.status_code == 302
        second = await client.get("/callback", params={"code": "gh-code", "state": "req-1"})
        assert second.status_code == 400
        assert second.json()["error"] == "invalid_request"

    async def test_repeat_login_reuses_user(
        self, client: AsyncClient, oauth_client: RegisteredClient, store: SqlAuthStore
    ) -> None:
        await _pending(store, "req-a")
        await _pending(store, "req-b")
        first = await client.get("/callback", params={"code": "x", "state": "req-a"})
        second = await client.get("/callback", params={"code": "y", "state": "req-b"})
        code_a = await store.get_auth_code(_query(first.headers["location"])["code"])
        code_b = await store.get_auth_code(_query(second.headers["location"])["code"])
        assert code_a.user_id == code_b.user_id

    async def test_missing_code(self, client: AsyncClient) -> None:
        resp = await client.get("/callback", params={"state": "req-1"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    async def test_unknown_state(self, client: AsyncClient) -> None:
        resp = await client.get("/callback", params={"code": "c", "state": "bogus"})
        assert resp.status_code == 400

    async def test_expired_request(
        self, client: AsyncClient, oauth_client: RegisteredClient, store: SqlAuthStore
    ) -> None:
        await _pending(store, expires_at=utcnow() - timedelta(seconds=1))
        resp = await client.get("/callback", params={"code": "c", "state": "req-1"})
        assert resp.status_code == 302
        assert _query(resp.headers["location"])["error"] == "access_denied"

    async def test_upstream_denied(
        self, client: AsyncClient, oauth_client: RegisteredClient, store: SqlAuthStore
    ) -> None:
        await _pending(store)
        resp = await client.get(
            "/callback", params={"error": "access_denied", "state": "req-1"}
        )
        query = _query(resp.headers["location"])
        assert query["error"] == "access_denied"
        assert query["state"] == "client-state"

    async def test_exchange_failure(
        self,
        client: AsyncClient,
        oauth_client: RegisteredClient,
        store: SqlAuthStore,
        upstream_stub: UpstreamStub,
    ) -> None:
        await _pending(store)
        upstream_stub.set(
            "/login/oauth/access_token", 200, {"error": "bad_verification_code"}
        )
        resp = await client.get("/callback", params={"code": "c", "state": "req-1"})
        assert _query(resp.headers["location"])["error"] == "server_error"

    async def test_user_lookup_failure(
        self,
        client: AsyncClient,
        oauth_client: RegisteredClient,
        store: SqlAuthStore,
        upstream_stub: UpstreamStub,
    ) -> None:
        await _pending(store)
        upstream_stub.set("/user", 500, {"message": "oops"})
        resp = await client.get("/callback", params={"code": "c", "state": "req-1"})
        assert _query(resp.headers["location"])["error"] == "server_error"

    async def test_allowlist_rejection(
        self,
        client: AsyncClient,
        oauth_client: RegisteredClient,
        store: SqlAuthStore,
        svc: AuthService,
    ) -> None:
        svc.policy = AllowlistPolicy(AllowlistSettings(users=["bob"]), svc.upstream)
        await _pending(store)
        resp = await client.get("/callback", params={"code": "c", "state": "req-1"})
        assert _query(resp.headers["location"])["error"] == "access_denied"

    async def test_allowlist_org_membership(
        self,
        client: AsyncClient,
        oauth_client: RegisteredClient,
        store: SqlAuthStore,
        svc: AuthService,
        upstream_stub: UpstreamStub,
    ) -> None:
        svc.policy = AllowlistPolicy(AllowlistSettings(orgs=["acme"]), svc.upstream)
        upstream_stub.set("/user/orgs", 200, [{"id": 9, "login": "ACME"}])
        await _pending(store)
        resp = await client.get("/callback", params={"code": "c", "state": "req-1"})
        assert "code" in _query(resp.headers["location"])
        assert "/user/orgs" in upstream_stub.paths()
        assert "/user/teams" not in upstream_stub.paths()
