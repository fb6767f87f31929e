"""Operator management of static clients (bearer-protected)."""

from fastapi import APIRouter, Request, Response
from pydantic import ValidationError
from starlette.responses import JSONResponse

from mcpauth.api.deps import CurrentPrincipal
from mcpauth.api.schemas import StaticClientCreateRequest, StaticClientResponse
from mcpauth.db.store import ClientNotFoundError
from mcpauth.oauth.errors import OAuthError
from mcpauth.oauth.service import AuthServiceDep
from mcpauth.oauth.types import RegisteredClient

router = APIRouter(prefix="/admin/clients", tags=["admin"])

HTTP_CREATED = 201
HTTP_NO_CONTENT = 204
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404


def _to_response(
    client: RegisteredClient, secret: str | None = None
) -> StaticClientResponse:
    return StaticClientResponse(
        client_id=client.client_id,
        client_secret=secret,
        client_name=client.client_name,
        redirect_uris=client.redirect_uris,
        scopes=client.scopes,
        created_at=client.created_at.isoformat(),
    )


def _not_found() -> JSONResponse:
    return OAuthError("invalid_client", "Client not found", HTTP_NOT_FOUND).to_response()


def _forbidden(description: str) -> JSONResponse:
    return OAuthError("access_denied", description, HTTP_FORBIDDEN).to_response()


@router.post("", response_model=None)
async def create_static_client(
    request: Request,
    svc: AuthServiceDep,
    _principal: CurrentPrincipal,
) -> JSONResponse:
    """POST /admin/clients -- provision a static client."""
    try:
        body = StaticClientCreateRequest.model_validate_json(await request.body())
    except ValidationError:
        return OAuthError("invalid_request", "Invalid JSON").to_response()
    if not body.client_name:
        return OAuthError("invalid_request", "client_name is required").to_response()
    if not body.redirect_uris:
        return OAuthError("invalid_request", "redirect_uris is required").to_response()

    client = await svc.create_client(
        redirect_uris=body.redirect_uris,
        client_name=body.client_name,
        scopes=body.scopes,
        is_static=True,
    )
    resp = _to_response(client, secret=client.client_secret)
    return JSONResponse(resp.model_dump(), status_code=HTTP_CREATED)


@router.get("", response_model_exclude_none=True)
async def list_static_clients(
    svc: AuthServiceDep,
    _principal: CurrentPrincipal,
) -> list[StaticClientResponse]:
    """GET /admin/clients -- static clients only, without secrets."""
    clients = await svc.store.list_clients()
    return [_to_response(c) for c in clients if c.is_static]


@router.get("/{client_id}", response_model=None)
async def get_static_client(
    client_id: str,
    svc: AuthServiceDep,
    _principal: CurrentPrincipal,
) -> JSONResponse:
    """GET /admin/clients/{id} -- one static client, without its secret."""
    try:
        client = await svc.store.get_client(client_id)
    except ClientNotFoundError:
        return _not_found()
    if not client.is_static:
        return _forbidden("Not a static client")
    return JSONResponse(_to_response(client).model_dump(exclude_none=True))


@router.delete("/{client_id}", response_model=None)
async def delete_static_client(
    client_id: str,
    svc: AuthServiceDep,
    _principal: CurrentPrincipal,
) -> Response:
    """DELETE /admin/clients/{id} -- remove a static client."""
    try:
        client = await svc.store.get_client(client_id)
    except ClientNotFoundError:
        return _not_found()
    if not client.is_static:
        return _forbidden("Cannot delete non-static client")
    await svc.store.delete_client(client_id)
    return Response(status_code=HTTP_NO_CONTENT)
