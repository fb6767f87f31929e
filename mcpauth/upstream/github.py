"""GitHub OAuth app client: code exchange plus user, org and team lookups."""

import logging
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from mcpauth.core.settings import (
    GITHUB_API_URL,
    GITHUB_AUTHORIZE_URL,
    GITHUB_TOKEN_URL,
    HTTP_TIMEOUT_DEFAULT,
    GitHubSettings,
)

logger = logging.getLogger(__name__)

UPSTREAM_SCOPES = "read:user read:org"
GITHUB_API_VERSION = "2022-11-28"
HTTP_OK = 200


class UpstreamError(Exception):
    """The upstream provider refused, failed, or returned garbage."""


class GitHubUser(BaseModel):
    id: int
    login: str
    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None


class GitHubOrg(BaseModel):
    id: int
    login: str


class GitHubTeam(BaseModel):
    id: int
    name: str = ""
    slug: str
    organization: GitHubOrg


class _TokenExchangeBody(BaseModel):
    access_token: str = ""
    token_type: str = ""
    scope: str = ""
    error: str | None = None
    error_description: str | None = None


_ORG_LIST = TypeAdapter(list[GitHubOrg])
_TEAM_LIST = TypeAdapter(list[GitHubTeam])


class GitHubClient:
    """Thin async wrapper over the GitHub OAuth and REST endpoints.

    One ``httpx.AsyncClient`` is shared by all calls; every call is bounded
    by ``timeout`` and is cancelled along with the awaiting task.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        authorize_url: str = GITHUB_AUTHORIZE_URL,
        token_url: str = GITHUB_TOKEN_URL,
        api_url: str = GITHUB_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.api_url = api_url.rstrip("/")
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: GitHubSettings,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "GitHubClient":
        return cls(
            settings.resolved_client_id(),
            settings.resolved_client_secret(),
            timeout=timeout,
            authorize_url=settings.authorize_url,
            token_url=settings.token_url,
            api_url=settings.api_url,
            transport=transport,
        )

    def authorization_url(self, callback_url: str, state: str) -> str:
        """Where to send the browser to start the upstream login."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": callback_url,
            "scope": UPSTREAM_SCOPES,
            "state": state,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, callback_url: str) -> str:
        """Trade an upstream authorization code for an upstream access token."""
        data = {
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "code": code,
            "redirect_uri": callback_url,
        }
        try:
            resp = await self._http.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"code exchange failed: {exc}") from exc

        if not resp.is_success:
            raise UpstreamError(f"code exchange returned HTTP {resp.status_code}")
        try:
            body = _TokenExchangeBody.model_validate_json(resp.content)
        except ValidationError as exc:
            raise UpstreamError("malformed code exchange response") from exc

        if body.error:
            logger.info("upstream rejected code exchange: %s", body.error)
            raise UpstreamError(
                f"GitHub error: {body.error} - {body.error_description or ''}"
            )
        if not body.access_token:
            raise UpstreamError("code exchange response has no access_token")
        return body.access_token

    async def _api_get(self, path: str, token: str) -> bytes:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        try:
            resp = await self._http.get(f"{self.api_url}{path}", headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"GET {path} failed: {exc}") from exc
        if resp.status_code != HTTP_OK:
            raise UpstreamError(f"GET {path} returned HTTP {resp.status_code}")
        return resp.content

    async def get_user(self, token: str) -> GitHubUser:
        content = await self._api_get("/user", token)
        try:
            return GitHubUser.model_validate_json(content)
        except ValidationError as exc:
            raise UpstreamError("malformed /user response") from exc

    async def get_user_orgs(self, token: str) -> list[GitHubOrg]:
        content = await self._api_get("/user/orgs", token)
        try:
            return _ORG_LIST.validate_json(content)
        except ValidationError as exc:
            raise UpstreamError("malformed /user/orgs response") from exc

    async def get_user_teams(self, token: str) -> list[GitHubTeam]:
        content = await self._api_get("/user/teams", token)
        try:
            return _TEAM_LIST.validate_json(content)
        except ValidationError as exc:
            raise UpstreamError("malformed /user/teams response") from exc

    async def aclose(self) -> None:
        await self._http.aclose()
