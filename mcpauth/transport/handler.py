"""Boundary between the transport and the JSON-RPC method router."""

import logging
from typing import Any, Protocol

from mcpauth.transport.sessions import Session

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
METHOD_NOT_FOUND = -32601

SERVER_NAME = "mcpauth"
SERVER_VERSION = "0.1.0"


class MessageHandler(Protocol):
    """Processes one decoded JSON-RPC message.

    Returns the reply object, or None for notifications.
    """

    async def handle_message(
        self, message: dict[str, Any], session: Session
    ) -> dict[str, Any] | None: ...


def result_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": code, "message": message},
    }


class DefaultMessageHandler:
    """Answers ``initialize`` and ``ping``; everything else is not found.

    Stands in until an application mounts its own method router.
    """

    def __init__(self, name: str = SERVER_NAME, version: str = SERVER_VERSION):
        self.name = name
        self.version = version

    async def handle_message(
        self, message: dict[str, Any], session: Session
    ) -> dict[str, Any] | None:
        method = message.get("method")
        if "id" not in message:
            logger.debug("notification %s on session %s", method, session.id)
            return None

        request_id = message["id"]
        if method == "initialize":
            return result_response(
                request_id,
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": self.name, "version": self.version},
                },
            )
        if method == "ping":
            return result_response(request_id, {})
        return error_response(request_id, METHOD_NOT_FOUND, "Method not found")
