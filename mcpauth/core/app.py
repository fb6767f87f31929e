"""FastAPI application factory for the mcpauth server."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mcpauth.api.deps import register_exception_handlers
from mcpauth.core.settings import AuthSettings, DatabaseSettings, GitHubSettings
from mcpauth.db.store import AuthStore
from mcpauth.db.store_sql import create_store
from mcpauth.oauth.routes_admin import router as admin_router
from mcpauth.oauth.routes_authorize import router as authorize_router
from mcpauth.oauth.routes_discovery import router as discovery_router
from mcpauth.oauth.routes_register import router as register_router
from mcpauth.oauth.routes_token import router as token_router
from mcpauth.oauth.service import AuthService
from mcpauth.transport.handler import DefaultMessageHandler, MessageHandler
from mcpauth.transport.routes_mcp import router as mcp_router
from mcpauth.transport.sessions import SessionManager
from mcpauth.upstream.github import GitHubClient

logger = logging.getLogger(__name__)


def create_app(
    settings: AuthSettings | None = None,
    store: AuthStore | None = None,
    upstream: GitHubClient | None = None,
    message_handler: MessageHandler | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Collaborators not passed in are built from environment settings. The
    store is initialized and static clients are provisioned at startup;
    sessions, the upstream client and the store are closed at shutdown.
    """
    settings = settings or AuthSettings()
    store = store or create_store(DatabaseSettings())
    upstream = upstream or GitHubClient.from_settings(
        GitHubSettings(), timeout=settings.http_timeout
    )
    auth_service = AuthService(settings, store, upstream)
    session_manager = SessionManager(store, queue_size=settings.session_queue_size)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await store.initialize()
        await auth_service.provision_static_clients()
        logger.info(
            "mcpauth ready: issuer=%s auth_enabled=%s",
            settings.issuer,
            settings.auth_enabled,
        )
        try:
            yield
        finally:
            await session_manager.close_all()
            await upstream.aclose()
            await store.close()

    app = FastAPI(
        title="mcpauth",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.auth_service = auth_service
    app.state.session_manager = session_manager
    app.state.message_handler = message_handler or DefaultMessageHandler()

    origins = settings.get_cors_origin_list()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "Mcp-Session-Id"],
            expose_headers=["Mcp-Session-Id", "WWW-Authenticate"],
        )

    register_exception_handlers(app)

    app.include_router(discovery_router)
    app.include_router(register_router)
    app.include_router(authorize_router)
    app.include_router(token_router)
    app.include_router(admin_router)
    app.include_router(mcp_router)

    return app
