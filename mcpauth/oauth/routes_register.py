"""RFC 7591 dynamic client registration."""

from urllib.parse import urlsplit

from fastapi import APIRouter, Request
from pydantic import ValidationError
from starlette.responses import JSONResponse

from mcpauth.api.schemas import ClientRegistrationRequest, ClientRegistrationResponse
from mcpauth.oauth.errors import OAuthError
from mcpauth.oauth.service import AuthServiceDep

router = APIRouter(tags=["oauth"])

HTTP_CREATED = 201


def _redirect_uri_problem(uris: list[str]) -> str | None:
    """Describe the first unacceptable redirect URI, if any."""
    if not uris:
        return "redirect_uris is required"
    for uri in uris:
        parts = urlsplit(uri)
        if not parts.scheme or parts.fragment:
            return f"invalid redirect_uri: {uri}"
    return None


@router.post("/register", response_model=None)
async def register_client(
    request: Request,
    svc: AuthServiceDep,
) -> JSONResponse:
    """POST /register -- create a dynamically registered client."""
    try:
        body = ClientRegistrationRequest.model_validate_json(await request.body())
    except ValidationError:
        return OAuthError("invalid_client_metadata", "Invalid JSON").to_response()

    problem = _redirect_uri_problem(body.redirect_uris)
    if problem is not None:
        return OAuthError("invalid_redirect_uri", problem).to_response()

    client = await svc.create_client(
        redirect_uris=body.redirect_uris,
        client_name=body.client_name,
        client_uri=body.client_uri,
        logo_uri=body.logo_uri,
        scopes=body.scope,
    )
    resp = ClientRegistrationResponse(
        client_id=client.client_id,
        client_secret=client.client_secret,
        client_name=client.client_name,
        client_uri=client.client_uri,
        logo_uri=client.logo_uri,
        redirect_uris=client.redirect_uris,
        grant_types=client.grant_types,
        response_types=client.response_types,
        token_endpoint_auth_method=client.token_endpoint_auth_method,
        client_id_issued_at=int(client.created_at.timestamp()),
    )
    return JSONResponse(
        resp.model_dump(exclude_none=True),
        status_code=HTTP_CREATED,
        headers={"Cache-Control": "no-store"},
    )
