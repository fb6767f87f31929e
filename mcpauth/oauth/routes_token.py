"""OAuth token endpoint."""

import logging
from typing import Annotated

from fastapi import APIRouter, Form
from pydantic import BaseModel
from starlette.responses import JSONResponse

from mcpauth.db.store import StorageError, TokenNotFoundError
from mcpauth.oauth.errors import NO_STORE_HEADERS, token_error_response
from mcpauth.oauth.pkce import PKCEError, validate_verifier
from mcpauth.oauth.service import AuthService, AuthServiceDep
from mcpauth.oauth.token_service import TokenPair
from mcpauth.oauth.types import TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])

HTTP_UNAUTHORIZED = 401
HTTP_INTERNAL_SERVER_ERROR = 500


class _TokenForm(BaseModel):
    """Bundle form fields for the token endpoint."""

    grant_type: str = ""
    code: str = ""
    redirect_uri: str = ""
    client_id: str = ""
    client_secret: str = ""
    code_verifier: str = ""
    refresh_token: str = ""
    resource: str = ""


def _token_response(svc: AuthService, pair: TokenPair) -> JSONResponse:
    body = TokenResponse(
        access_token=pair.access_token.token,
        token_type=pair.access_token.token_type,
        expires_in=svc.expires_in(pair.access_token.expires_at),
        refresh_token=pair.refresh_token.token,
        scope=pair.access_token.scope or None,
    )
    return JSONResponse(body.model_dump(exclude_none=True), headers=NO_STORE_HEADERS)


@router.post("/token", response_model=None)
async def token_endpoint(
    svc: AuthServiceDep,
    form: Annotated[_TokenForm, Form()],
) -> JSONResponse:
    """POST /token -- redeem an authorization code or refresh token."""
    if not form.grant_type:
        return token_error_response("invalid_request", "grant_type is required")
    if form.grant_type not in ("authorization_code", "refresh_token"):
        return token_error_response(
            "unsupported_grant_type",
            "Only authorization_code and refresh_token grants are supported",
        )

    try:
        if form.client_secret and not await svc.verify_client_secret(
            form.client_id, form.client_secret
        ):
            return token_error_response(
                "invalid_client",
                "Client authentication failed",
                status_code=HTTP_UNAUTHORIZED,
            )
        if form.grant_type == "authorization_code":
            return await _handle_auth_code(svc, form)
        return await _handle_refresh(svc, form)
    except StorageError:
        logger.exception("token endpoint storage failure")
        return token_error_response(
            "server_error",
            "Internal error",
            status_code=HTTP_INTERNAL_SERVER_ERROR,
        )


async def _handle_auth_code(svc: AuthService, form: _TokenForm) -> JSONResponse:
    """Handle grant_type=authorization_code."""
    try:
        code = await svc.store.get_auth_code(form.code)
    except TokenNotFoundError:
        return token_error_response("invalid_grant", "Invalid authorization code")

    await svc.store.delete_auth_code(form.code)

    if code.is_expired():
        return token_error_response("invalid_grant", "Authorization code expired")
    if code.client_id != form.client_id:
        return token_error_response("invalid_grant", "Client ID mismatch")
    if code.redirect_uri != form.redirect_uri:
        return token_error_response("invalid_grant", "Redirect URI mismatch")
    try:
        validate_verifier(
            form.code_verifier, code.code_challenge, code.code_challenge_method
        )
    except PKCEError as exc:
        return token_error_response("invalid_grant", str(exc))
    if form.resource and code.resource and form.resource != code.resource:
        return token_error_response("invalid_target", "Resource mismatch")

    pair = await svc.tokens.issue_token_pair(
        code.user_id, form.client_id, code.scope, code.resource
    )
    logger.info("issued tokens to client %s for user %s", form.client_id, code.user_id)
    return _token_response(svc, pair)


async def _handle_refresh(svc: AuthService, form: _TokenForm) -> JSONResponse:
    """Handle grant_type=refresh_token."""
    try:
        refresh = await svc.store.get_refresh_token(form.refresh_token)
    except TokenNotFoundError:
        return token_error_response("invalid_grant", "Invalid refresh token")

    if refresh.is_expired():
        await svc.store.delete_refresh_token(form.refresh_token)
        return token_error_response("invalid_grant", "Refresh token expired")
    if refresh.client_id != form.client_id:
        return token_error_response("invalid_grant", "Client ID mismatch")

    await svc.store.delete_refresh_token(form.refresh_token)
    pair = await svc.tokens.issue_token_pair(
        refresh.user_id, form.client_id, refresh.scope, refresh.resource
    )
    logger.info("rotated refresh token for client %s", form.client_id)
    return _token_response(svc, pair)
