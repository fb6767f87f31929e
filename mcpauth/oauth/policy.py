"""Allowlist policy applied after a successful upstream login."""

import logging
from typing import Protocol

from mcpauth.core.settings import AllowlistSettings
from mcpauth.upstream.github import GitHubOrg, GitHubTeam, GitHubUser, UpstreamError

logger = logging.getLogger(__name__)


class MembershipSource(Protocol):
    async def get_user_orgs(self, token: str) -> list[GitHubOrg]: ...

    async def get_user_teams(self, token: str) -> list[GitHubTeam]: ...


def _eq(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


class AllowlistPolicy:
    """Decides whether an upstream identity may use this server.

    An empty allowlist admits everyone. Otherwise the user is admitted when
    any rule matches: a listed login, membership in a listed org, or
    membership in a listed org/team pair. A failed membership lookup only
    disables the rule that needed it.
    """

    def __init__(self, allowlist: AllowlistSettings, upstream: MembershipSource):
        self.allowlist = allowlist
        self.upstream = upstream

    async def is_authorized(self, user: GitHubUser, upstream_token: str) -> bool:
        allowlist = self.allowlist
        if allowlist.is_empty():
            return True

        if any(_eq(login, user.login) for login in allowlist.users):
            return True

        if not (allowlist.orgs or allowlist.teams):
            return False

        if await self._matches_org(user, upstream_token):
            return True

        if allowlist.teams and await self._matches_team(user, upstream_token):
            return True

        logger.info("user %s is not on the allowlist", user.login)
        return False

    async def _matches_org(self, user: GitHubUser, token: str) -> bool:
        try:
            orgs = await self.upstream.get_user_orgs(token)
        except UpstreamError as exc:
            logger.warning("org lookup failed for %s: %s", user.login, exc)
            return False
        return any(
            _eq(allowed, org.login) for org in orgs for allowed in self.allowlist.orgs
        )

    async def _matches_team(self, user: GitHubUser, token: str) -> bool:
        try:
            teams = await self.upstream.get_user_teams(token)
        except UpstreamError as exc:
            logger.warning("team lookup failed for %s: %s", user.login, exc)
            return False
        return any(
            _eq(ref.org, team.organization.login) and _eq(ref.team, team.slug)
            for team in teams
            for ref in self.allowlist.teams
        )
