"""Authorization endpoint and upstream callback."""

import logging
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Form, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from starlette.responses import JSONResponse

from mcpauth.db.store import (
    AuthRequestNotFoundError,
    ClientNotFoundError,
    StorageError,
)
from mcpauth.oauth.errors import (
    HTTP_FOUND,
    OAuthError,
    authorize_error_response,
    with_query,
)
from mcpauth.oauth.pkce import PKCEError, validate_challenge
from mcpauth.oauth.service import AuthService, AuthServiceDep
from mcpauth.oauth.token_service import generate_secure_token
from mcpauth.oauth.types import (
    PendingAuthorizationRequest,
    RegisteredClient,
    utcnow,
)
from mcpauth.upstream.github import UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])

AUTH_REQUEST_ID_BYTES = 16


class _AuthorizeParams(BaseModel):
    """Bundle authorize parameters from the query string or form body."""

    client_id: str = ""
    redirect_uri: str = ""
    response_type: str = ""
    scope: str = ""
    state: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""
    resource: str = ""


async def _lookup_client(svc: AuthService, client_id: str) -> RegisteredClient | None:
    if not client_id:
        return None
    try:
        return await svc.store.get_client(client_id)
    except ClientNotFoundError:
        return None


async def _begin_authorization(
    svc: AuthService, p: _AuthorizeParams
) -> RedirectResponse | JSONResponse:
    client = await _lookup_client(svc, p.client_id)
    # Errors only go back to a redirect URI the client registered.
    verified_redirect = (
        p.redirect_uri
        if client is not None and client.has_redirect_uri(p.redirect_uri)
        else None
    )

    if p.response_type != "code":
        return authorize_error_response(
            verified_redirect,
            "unsupported_response_type",
            "Only 'code' response_type is supported",
            p.state,
        )

    try:
        validate_challenge(p.code_challenge, p.code_challenge_method)
    except PKCEError as exc:
        return authorize_error_response(
            verified_redirect, "invalid_request", str(exc), p.state
        )

    if client is None:
        return authorize_error_response(None, "invalid_client", "Unknown client_id")

    if verified_redirect is None:
        return authorize_error_response(None, "invalid_request", "Invalid redirect_uri")

    now = utcnow()
    pending = PendingAuthorizationRequest(
        id=generate_secure_token(AUTH_REQUEST_ID_BYTES),
        client_id=p.client_id,
        redirect_uri=p.redirect_uri,
        scope=p.scope,
        state=p.state,
        code_challenge=p.code_challenge,
        code_challenge_method=p.code_challenge_method,
        resource=p.resource,
        created_at=now,
        expires_at=now + timedelta(seconds=svc.settings.auth_request_ttl),
    )
    await svc.store.store_auth_request(pending)

    return RedirectResponse(
        url=svc.upstream.authorization_url(svc.callback_url, pending.id),
        status_code=HTTP_FOUND,
    )


@router.get("/authorize", response_model=None)
async def authorize_get(
    svc: AuthServiceDep,
    params: Annotated[_AuthorizeParams, Query()],
) -> RedirectResponse | JSONResponse:
    """GET /authorize -- start an authorization code flow."""
    return await _begin_authorization(svc, params)


@router.post("/authorize", response_model=None)
async def authorize_post(
    svc: AuthServiceDep,
    params: Annotated[_AuthorizeParams, Form()],
) -> RedirectResponse | JSONResponse:
    """POST /authorize -- start an authorization code flow (form-encoded)."""
    return await _begin_authorization(svc, params)


@router.get("/callback", response_model=None)
async def upstream_callback(
    svc: AuthServiceDep,
    code: str = "",
    state: str = "",
    error: str = "",
) -> RedirectResponse | JSONResponse:
    """GET /callback -- upstream provider returns here after login."""
    if not code and not error:
        return OAuthError("invalid_request", "Missing authorization code").to_response()

    try:
        pending = await svc.store.get_auth_request(state)
    except AuthRequestNotFoundError:
        return OAuthError(
            "invalid_request", "Invalid or expired authorization request"
        ).to_response()

    await svc.store.delete_auth_request(state)

    def fail(err: str, description: str) -> RedirectResponse | JSONResponse:
        return authorize_error_response(
            pending.redirect_uri, err, description, pending.state
        )

    if pending.is_expired():
        return fail("access_denied", "Authorization request expired")

    if error:
        logger.info("upstream denied authorization: %s", error)
        return fail("access_denied", "Upstream authorization was denied")

    try:
        upstream_token = await svc.upstream.exchange_code(code, svc.callback_url)
    except UpstreamError as exc:
        logger.warning("upstream code exchange failed: %s", exc)
        return fail("server_error", "Failed to authenticate with upstream provider")

    try:
        gh_user = await svc.upstream.get_user(upstream_token)
    except UpstreamError as exc:
        logger.warning("upstream user lookup failed: %s", exc)
        return fail("server_error", "Failed to get user info")

    if not await svc.policy.is_authorized(gh_user, upstream_token):
        return fail("access_denied", "User not authorized")

    try:
        user = await svc.upsert_user(gh_user)
        auth_code = await svc.tokens.issue_authorization_code(
            client_id=pending.client_id,
            redirect_uri=pending.redirect_uri,
            scope=pending.scope,
            code_challenge=pending.code_challenge,
            code_challenge_method=pending.code_challenge_method,
            resource=pending.resource,
            user_id=user.id,
        )
    except StorageError:
        logger.exception("failed to record login for %s", gh_user.login)
        return fail("server_error", "Failed to generate authorization code")

    logger.info(
        "issued authorization code to client %s for %s",
        pending.client_id,
        user.github_login,
    )
    params = {"code": auth_code.code}
    if pending.state:
        params["state"] = pending.state
    return RedirectResponse(
        url=with_query(pending.redirect_uri, params),
        status_code=HTTP_FOUND,
    )
