"""End-to-end: register, authorize via upstream, redeem, refresh, call /mcp."""

import hashlib
from base64 import urlsafe_b64encode
from urllib.parse import parse_qs, urlsplit

import pytest
from httpx import AsyncClient

from mcpauth.core.settings import AllowlistSettings
from mcpauth.oauth.policy import AllowlistPolicy
from mcpauth.oauth.service import AuthService
from tests.conftest import UpstreamStub

REDIRECT_URI = "http://localhost:3000/callback"
RESOURCE = "http://localhost:8080/mcp"
VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

pytestmark = pytest.mark.integration


def _make_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _query(location: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}


async def _register(client: AsyncClient) -> dict:
    resp = await client.post(
        "/register",
        json={"client_name": "Flow Client", "redirect_uris": [REDIRECT_URI]},
    )
    assert resp.status_code == 201
    return resp.json()


async def _login(client: AsyncClient, client_id: str) -> str:
    """Run /authorize and /callback; return the redirect back to the client."""
    resp = await client.get(
        "/authorize",
        params={
            "client_id": client_id,
            "redirect_uri": REDIRECT_URI,
            "response_type": "code",
            "scope": "mcp:tools",
            "state": "xyz",
            "code_challenge": _make_challenge(VERIFIER),
            "code_challenge_method": "S256",
            "resource": RESOURCE,
        },
    )
    assert resp.status_code == 302
    upstream_state = _query(resp.headers["location"])["state"]

    resp = await client.get(
        "/callback", params={"code": "gh-code", "state": upstream_state}
    )
    assert resp.status_code == 302
    return resp.headers["location"]


class TestFullFlow:
    async def test_register_login_redeem_refresh_use(
        self, client: AsyncClient, upstream_stub: UpstreamStub
    ) -> None:
        registered = await _register(client)
        client_id = registered["client_id"]

        location = await _login(client, client_id)
        assert location.startswith(REDIRECT_URI)
        back = _query(location)
        assert back["state"] == "xyz"

        resp = await client.post(
            "/token",
            data={
                "grant_type": "authorization_code",
                "code": back["code"],
                "redirect_uri": REDIRECT_URI,
                "client_id": client_id,
                "code_verifier": VERIFIER,
                "resource": RESOURCE,
            },
        )
        assert resp.status_code == 200
        tokens = resp.json()
        assert tokens["token_type"] == "Bearer"
        assert tokens["expires_in"] == 3600

        resp = await client.post(
            "/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": tokens["refresh_token"],
                "client_id": client_id,
            },
        )
        assert resp.status_code == 200
        rotated = resp.json()
        assert rotated["refresh_token"] != tokens["refresh_token"]

        auth = {"Authorization": f"Bearer {rotated['access_token']}"}
        resp = await client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}},
            headers=auth,
        )
        assert resp.status_code == 200
        session_id = resp.headers["mcp-session-id"]

        resp = await client.delete("/mcp", headers={**auth, "Mcp-Session-Id": session_id})
        assert resp.status_code == 200

        assert upstream_stub.paths() == ["/login/oauth/access_token", "/user"]

    async def test_code_replay_is_rejected(self, client: AsyncClient) -> None:
        client_id = (await _register(client))["client_id"]
        code = _query(await _login(client, client_id))["code"]
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": REDIRECT_URI,
            "client_id": client_id,
            "code_verifier": VERIFIER,
        }
        assert (await client.post("/token", data=form)).status_code == 200
        replay = await client.post("/token", data=form)
        assert replay.status_code == 400
        assert replay.json()["error"] == "invalid_grant"

    async def test_allowlisted_team_member(
        self, client: AsyncClient, svc: AuthService, upstream_stub: UpstreamStub
    ) -> None:
        svc.policy = AllowlistPolicy(
            AllowlistSettings.model_validate(
                {"teams": [{"org": "acme", "team": "platform"}]}
            ),
            svc.upstream,
        )
        upstream_stub.set(
            "/user/teams",
            200,
            [
                {
                    "id": 11,
                    "name": "Platform",
                    "slug": "platform",
                    "organization": {"id": 1, "login": "acme"},
                }
            ],
        )
        client_id = (await _register(client))["client_id"]
        back = _query(await _login(client, client_id))
        assert "code" in back
        assert upstream_stub.paths()[-2:] == ["/user/orgs", "/user/teams"]

    async def test_user_outside_allowlist(
        self, client: AsyncClient, svc: AuthService
    ) -> None:
        svc.policy = AllowlistPolicy(AllowlistSettings(orgs=["acme"]), svc.upstream)
        client_id = (await _register(client))["client_id"]
        back = _query(await _login(client, client_id))
        assert back == {
            "error": "access_denied",
            "error_description": "User not authorized",
            "state": "xyz",
        }
