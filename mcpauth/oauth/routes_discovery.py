"""OAuth metadata endpoints."""

from fastapi import APIRouter, Response

from mcpauth.oauth.discovery import (
    AUTH_SERVER_METADATA_PATH,
    PROTECTED_RESOURCE_METADATA_PATH,
    AuthorizationServerMetadata,
    ProtectedResourceMetadata,
    build_authorization_server_metadata,
    build_protected_resource_metadata,
)
from mcpauth.oauth.service import AuthServiceDep

router = APIRouter(tags=["discovery"])


@router.get(AUTH_SERVER_METADATA_PATH)
async def authorization_server_metadata(
    response: Response,
    svc: AuthServiceDep,
) -> AuthorizationServerMetadata:
    """RFC 8414 Authorization Server Metadata."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    return build_authorization_server_metadata(svc.settings)


@router.get(PROTECTED_RESOURCE_METADATA_PATH)
async def protected_resource_metadata(
    response: Response,
    svc: AuthServiceDep,
) -> ProtectedResourceMetadata:
    """RFC 9728 Protected Resource Metadata."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    return build_protected_resource_metadata(svc.settings)
