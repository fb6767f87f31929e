"""Tests for the GitHub upstream client."""

from urllib.parse import parse_qs, urlsplit

import pytest

from mcpauth.upstream.github import GitHubClient, UpstreamError
from tests.conftest import ALICE, UpstreamStub

CALLBACK = "http://localhost:8080/callback"


class TestAuthorizationUrl:
    def test_params(self, github: GitHubClient) -> None:
        url = github.authorization_url(CALLBACK, "state-123")
        parts = urlsplit(url)
        query = parse_qs(parts.query)
        assert parts.netloc == "github.test"
        assert query["client_id"] == ["upstream-client-id"]
        assert query["redirect_uri"] == [CALLBACK]
        assert query["scope"] == ["read:user read:org"]
        assert query["state"] == ["state-123"]


class TestExchangeCode:
    async def test_success(self, github: GitHubClient, upstream_stub: UpstreamStub) -> None:
        assert await github.exchange_code("gh-code", CALLBACK) == "gh-token"
        sent = upstream_stub.requests[0]
        assert sent.method == "POST"
        assert sent.headers["accept"] == "application/json"
        form = parse_qs(sent.content.decode())
        assert form["code"] == ["gh-code"]
        assert form["client_secret"] == ["upstream-client-secret"]

    async def test_error_field_in_200(
        self, github: GitHubClient, upstream_stub: UpstreamStub
    ) -> None:
        upstream_stub.set(
            "/login/oauth/access_token",
            200,
            {"error": "bad_verification_code", "error_description": "expired"},
        )
        with pytest.raises(UpstreamError, match="bad_verification_code"):
            await github.exchange_code("gh-code", CALLBACK)

    async def test_http_error(self, github: GitHubClient, upstream_stub: UpstreamStub) -> None:
        upstream_stub.set("/login/oauth/access_token", 502, {"message": "bad gateway"})
        with pytest.raises(UpstreamError, match="502"):
            await github.exchange_code("gh-code", CALLBACK)

    async def test_malformed_body(
        self, github: GitHubClient, upstream_stub: UpstreamStub
    ) -> None:
        upstream_stub.set("/login/oauth/access_token", 200, "not json")
        with pytest.raises(UpstreamError, match="malformed"):
            await github.exchange_code("gh-code", CALLBACK)

    async def test_missing_token(
        self, github: GitHubClient, upstream_stub: UpstreamStub
    ) -> None:
        upstream_stub.set("/login/oauth/access_token", 200, {"token_type": "bearer"})
        with pytest.raises(UpstreamError, match="no access_token"):
            await github.exchange_code("gh-code", CALLBACK)

    async def test_transport_failure(
        self, github: GitHubClient, upstream_stub: UpstreamStub
    ) -> None:
        upstream_stub.fail("/login/oauth/access_token")
        with pytest.raises(UpstreamError):
            await github.exchange_code("gh-code", CALLBACK)


class TestApi:
    async def test_get_user_headers(
        self, github: GitHubClient, upstream_stub: UpstreamStub
    ) -> None:
        user = await github.get_user("gh-token")
        assert user.id == ALICE["id"]
        assert user.login == "alice"
        sent = upstream_stub.requests[0]
        assert sent.headers["authorization"] == "Bearer gh-token"
        assert sent.headers["accept"] == "application/vnd.github+json"
        assert sent.headers["x-github-api-version"] == "2022-11-28"

    async def test_user_non_200(self, github: GitHubClient, upstream_stub: UpstreamStub) -> None:
        upstream_stub.set("/user", 401, {"message": "Bad credentials"})
        with pytest.raises(UpstreamError, match="401"):
            await github.get_user("gh-token")

    async def test_user_missing_fields(
        self, github: GitHubClient, upstream_stub: UpstreamStub
    ) -> None:
        upstream_stub.set("/user", 200, {"name": "no id"})
        with pytest.raises(UpstreamError, match="malformed"):
            await github.get_user("gh-token")

    async def test_orgs_and_teams(
        self, github: GitHubClient, upstream_stub: UpstreamStub
    ) -> None:
        upstream_stub.set("/user/orgs", 200, [{"id": 1, "login": "acme"}])
        upstream_stub.set(
            "/user/teams",
            200,
            [
                {
                    "id": 7,
                    "name": "Core",
                    "slug": "core",
                    "organization": {"id": 1, "login": "acme"},
                }
            ],
        )
        orgs = await github.get_user_orgs("gh-token")
        teams = await github.get_user_teams("gh-token")
        assert [o.login for o in orgs] == ["acme"]
        assert teams[0].slug == "core"
        assert teams[0].organization.login == "acme"
        assert upstream_stub.paths() == ["/user/orgs", "/user/teams"]

    async def test_orgs_not_a_list(
        self, github: GitHubClient, upstream_stub: UpstreamStub
    ) -> None:
        upstream_stub.set("/user/orgs", 200, {"message": "nope"})
        with pytest.raises(UpstreamError):
            await github.get_user_orgs("gh-token")
