"""Streamable HTTP endpoint for MCP traffic."""

import json
import logging
from functools import partial
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse
from starlette.responses import JSONResponse

from mcpauth.api.deps import MaybePrincipal, Principal
from mcpauth.core.logging_config import TRACE, sanitize_headers
from mcpauth.oauth.service import AuthServiceDep
from mcpauth.transport.handler import MessageHandler
from mcpauth.transport.sessions import (
    ENDPOINT_PATH,
    Session,
    SessionManager,
    event_stream,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mcp"])

SESSION_HEADER = "Mcp-Session-Id"
SESSION_QUERY_PARAM = "sessionId"

HTTP_OK = 200
HTTP_ACCEPTED = 202
HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Mcp-Session-Id, Accept, Authorization",
    "Access-Control-Expose-Headers": "Mcp-Session-Id",
}
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_message_handler(request: Request) -> MessageHandler:
    return request.app.state.message_handler


Sessions = Annotated[SessionManager, Depends(get_session_manager)]
Handler = Annotated[MessageHandler, Depends(get_message_handler)]


def _requested_session_id(request: Request) -> str:
    return request.headers.get(SESSION_HEADER) or request.query_params.get(
        SESSION_QUERY_PARAM, ""
    )


def _lookup(
    sessions: SessionManager, session_id: str, principal: Principal | None
) -> Session | None:
    """Find a session, hiding sessions that belong to someone else."""
    session = sessions.get_session(session_id)
    if session is None:
        return None
    if (
        session.principal is not None
        and principal is not None
        and session.user_id != principal.user_id
    ):
        logger.info(
            "user %s tried to use session %s owned by %s",
            principal.user_id,
            session_id,
            session.user_id,
        )
        return None
    return session


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=CORS_HEADERS)


def _wants_stream_only(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "text/event-stream" in accept and "application/json" not in accept


def _log_completion(
    request: Request,
    status_code: int,
    session_id: str | None,
    principal: Principal | None,
) -> None:
    logger.debug(
        "%s %s -> %d session_id=%s user_id=%s remote_addr=%s",
        request.method,
        request.url.path,
        status_code,
        session_id or "-",
        principal.user_id if principal else "-",
        request.client.host if request.client else "-",
    )


@router.options(ENDPOINT_PATH)
async def mcp_preflight() -> Response:
    """OPTIONS /mcp -- CORS preflight."""
    return Response(status_code=HTTP_OK, headers=CORS_HEADERS)


@router.post(ENDPOINT_PATH, response_model=None)
async def mcp_post(
    request: Request,
    principal: MaybePrincipal,
    sessions: Sessions,
    handler: Handler,
) -> Response:
    """POST /mcp -- one client-to-server JSON-RPC message."""
    raw = await request.body()
    if logger.isEnabledFor(TRACE):
        logger.log(
            TRACE,
            "POST /mcp headers=%s body=%s",
            sanitize_headers(request.headers),
            raw.decode(errors="replace"),
        )
    try:
        message: Any = json.loads(raw)
    except ValueError:
        return _error("Invalid JSON", HTTP_BAD_REQUEST)
    if not isinstance(message, dict):
        return _error("Expected a JSON-RPC object", HTTP_BAD_REQUEST)

    session_id = _requested_session_id(request)
    if message.get("method") == "initialize":
        session = _lookup(sessions, session_id, principal) if session_id else None
        if session is None:
            session = await sessions.create_session(principal)
    else:
        if not session_id:
            return _error("Missing Mcp-Session-Id header", HTTP_BAD_REQUEST)
        session = _lookup(sessions, session_id, principal)
        if session is None:
            _log_completion(request, HTTP_NOT_FOUND, session_id, principal)
            return _error("Session not found", HTTP_NOT_FOUND)

    reply = await handler.handle_message(message, session)
    await sessions.touch(session.id)

    headers = {SESSION_HEADER: session.id, **CORS_HEADERS}
    if reply is None:
        status_code = HTTP_ACCEPTED
        response: Response = Response(status_code=status_code, headers=headers)
    elif _wants_stream_only(request):
        session.send(json.dumps(reply))
        status_code = HTTP_ACCEPTED
        response = Response(status_code=status_code, headers=headers)
    else:
        status_code = HTTP_OK
        response = JSONResponse(reply, headers=headers)
        if logger.isEnabledFor(TRACE):
            logger.log(TRACE, "POST /mcp reply=%s", json.dumps(reply))

    _log_completion(request, status_code, session.id, principal)
    return response


@router.get(ENDPOINT_PATH, response_model=None)
async def mcp_stream(
    request: Request,
    principal: MaybePrincipal,
    sessions: Sessions,
    svc: AuthServiceDep,
) -> Response:
    """GET /mcp -- server-to-client event stream."""
    session_id = _requested_session_id(request)
    if session_id:
        session = _lookup(sessions, session_id, principal)
        if session is None:
            _log_completion(request, HTTP_NOT_FOUND, session_id, principal)
            return _error("Session not found", HTTP_NOT_FOUND)
        if session.stream_attached:
            _log_completion(request, HTTP_CONFLICT, session_id, principal)
            return _error("Session already has an event stream", HTTP_CONFLICT)
        announce = False
    else:
        session = await sessions.create_session(principal)
        announce = True

    _log_completion(request, HTTP_OK, session.id, principal)
    return StreamingResponse(
        event_stream(
            session,
            is_disconnected=request.is_disconnected,
            keepalive_interval=svc.settings.keepalive_interval,
            announce=announce,
            on_disconnect=partial(sessions.discard_session, session.id),
        ),
        media_type="text/event-stream",
        headers={SESSION_HEADER: session.id, **SSE_HEADERS, **CORS_HEADERS},
    )


@router.delete(ENDPOINT_PATH, response_model=None)
async def mcp_delete(
    request: Request,
    principal: MaybePrincipal,
    sessions: Sessions,
) -> Response:
    """DELETE /mcp -- end a session."""
    session_id = _requested_session_id(request)
    if not session_id:
        return _error("Missing Mcp-Session-Id header", HTTP_BAD_REQUEST)
    if _lookup(sessions, session_id, principal) is not None:
        await sessions.remove_session(session_id)
    _log_completion(request, HTTP_OK, session_id, principal)
    return Response(status_code=HTTP_OK, headers=CORS_HEADERS)
