"""Bearer token authentication for protected routes."""

import logging
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from pydantic import BaseModel
from starlette.responses import JSONResponse

from mcpauth.db.store import StorageError, TokenNotFoundError, UserNotFoundError
from mcpauth.oauth.errors import OAuthError
from mcpauth.oauth.service import AuthService, AuthServiceDep
from mcpauth.oauth.token_service import TokenExpiredError
from mcpauth.oauth.types import AccessToken, User

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_INTERNAL_SERVER_ERROR = 500

REALM = "MCP Server"


class Principal(BaseModel):
    """The authenticated caller of a protected route."""

    user: User
    access_token: AccessToken

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def client_id(self) -> str:
        return self.access_token.client_id


class BearerAuthError(Exception):
    """Bearer validation failed; ``reason`` is for logs only."""

    def __init__(self, reason: str, description: str) -> None:
        super().__init__(description)
        self.reason = reason
        self.description = description


class InsufficientScopeError(Exception):
    """The token is valid but lacks a scope the route requires."""

    def __init__(self, description: str = "Insufficient scope") -> None:
        super().__init__(description)
        self.description = description


def _remote_addr(request: Request) -> str:
    return request.client.host if request.client else "-"


def _reject(request: Request, reason: str, description: str) -> BearerAuthError:
    logger.debug("auth failed: %s (remote_addr=%s)", reason, _remote_addr(request))
    return BearerAuthError(reason, description)


def www_authenticate(svc: AuthService) -> str:
    return (
        f'Bearer realm="{REALM}", '
        f'resource_metadata="{svc.resource_metadata_url}"'
    )


async def require_principal(request: Request, svc: AuthServiceDep) -> Principal:
    """Resolve ``Authorization: Bearer`` into a Principal or raise 401."""
    header = request.headers.get("authorization")
    if not header:
        raise _reject(request, "missing_header", "Missing Authorization header")

    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _reject(
            request, "malformed_header", "Invalid Authorization header format"
        )

    try:
        access = await svc.tokens.validate_access_token(token.strip())
    except TokenExpiredError:
        raise _reject(request, "token_expired", "Access token expired") from None
    except TokenNotFoundError:
        raise _reject(request, "token_unknown", "Invalid access token") from None

    try:
        user = await svc.store.get_user(access.user_id)
    except UserNotFoundError:
        raise _reject(request, "user_not_found", "User not found") from None

    logger.debug(
        "auth ok: user_id=%s client_id=%s remote_addr=%s",
        user.id,
        access.client_id,
        _remote_addr(request),
    )
    return Principal(user=user, access_token=access)


async def optional_principal(request: Request, svc: AuthServiceDep) -> Principal | None:
    """Like ``require_principal``, but yields None when auth is disabled."""
    if not svc.settings.auth_enabled:
        return None
    return await require_principal(request, svc)


CurrentPrincipal = Annotated[Principal, Depends(require_principal)]
MaybePrincipal = Annotated[Principal | None, Depends(optional_principal)]


async def _bearer_auth_handler(request: Request, exc: BearerAuthError) -> JSONResponse:
    svc: AuthService = request.app.state.auth_service
    return OAuthError("invalid_token", exc.description, HTTP_UNAUTHORIZED).to_response(
        headers={"WWW-Authenticate": www_authenticate(svc)}
    )


async def _insufficient_scope_handler(
    _request: Request, exc: InsufficientScopeError
) -> JSONResponse:
    return OAuthError(
        "insufficient_scope", exc.description, HTTP_FORBIDDEN
    ).to_response()


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(
        "storage failure on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return OAuthError(
        "server_error", "Internal error", HTTP_INTERNAL_SERVER_ERROR
    ).to_response()


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BearerAuthError, _bearer_auth_handler)
    app.add_exception_handler(InsufficientScopeError, _insufficient_scope_handler)
    app.add_exception_handler(StorageError, _storage_error_handler)
