"""Starlette application for the HTTP transports and the uvicorn runner around it."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from ...config import DEFAULT_UPLOAD_TEMP_DIR, HttpTransportConfig
from ...session_store import SessionStore
from ...storage import ObjectStorage
from .file_interceptor import FileInterceptorMiddleware
from .middleware import RateLimiter, SecurityMiddleware
from .routes import create_routes
from .session import SessionManager, TransportFactory
from .sse import SSEManager
from .sse_routes import create_sse_routes

logger = logging.getLogger("human-mcp.http")

CORS_ALLOW_HEADERS = [
    "Content-Type",
    "mcp-session-id",
    "Authorization",
    "mcp-protocol-version",
    "last-event-id",
]


def create_app(
    mcp_server: Any,
    config: HttpTransportConfig,
    *,
    storage: ObjectStorage | None = None,
    networked: bool = True,
    upload_temp_dir: str = DEFAULT_UPLOAD_TEMP_DIR,
    session_store: SessionStore | None = None,
    rate_limiter: RateLimiter | None = None,
    session_transport_factory: TransportFactory | None = None,
    sse_transport_factory: TransportFactory | None = None,
) -> Starlette:
    """Build the ASGI app.

    ``mcp_server`` is the low-level MCP server (``FastMCP._mcp_server``).
    Both session managers live on ``app.state`` and are shut down by the
    app's lifespan.
    """
    sse_manager = SSEManager(sse_transport_factory) if config.enable_sse_fallback else None
    session_manager = SessionManager(
        json_response=config.enable_json_response,
        store=session_store,
        idle_timeout=config.session_idle_timeout,
        transport_factory=session_transport_factory,
        reserved=sse_manager,
    )

    routes = create_routes(mcp_server, session_manager, config, storage=storage, sse_sessions=sse_manager)
    if sse_manager is not None:
        routes.extend(create_sse_routes(mcp_server, sse_manager, session_manager, config))

    @asynccontextmanager
    async def lifespan(app: Starlette):
        async with session_manager.run():
            logger.info(f"HTTP transport ready ({config.session_mode} mode)")
            try:
                yield
            finally:
                if sse_manager is not None:
                    await sse_manager.cleanup()
                logger.info("HTTP transport shut down")

    middleware = []
    security = config.security
    if security.enable_cors:
        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=list(security.cors_origins),
                allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
                allow_headers=CORS_ALLOW_HEADERS,
                expose_headers=["Mcp-Session-Id"],
                allow_credentials=True,
            )
        )
    middleware.append(Middleware(SecurityMiddleware, config=security, rate_limiter=rate_limiter))
    middleware.append(
        Middleware(
            FileInterceptorMiddleware,
            storage=storage,
            networked=networked,
            upload_temp_dir=upload_temp_dir,
        )
    )

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.session_manager = session_manager
    app.state.sse_manager = sse_manager
    return app


class HttpTransport:
    """Serves ``create_app`` with uvicorn until ``stop()`` is called."""

    def __init__(self, mcp_server: Any, config: HttpTransportConfig, **app_options: Any):
        self.config = config
        self.app = create_app(mcp_server, config, **app_options)
        self._server: uvicorn.Server | None = None

    async def serve(self) -> None:
        uvicorn_config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level="warning",
        )
        self._server = uvicorn.Server(uvicorn_config)

        logger.info(f"Streamable HTTP listening on http://{self.config.host}:{self.config.port}/mcp")
        if self.config.enable_sse_fallback:
            paths = self.config.sse_paths
            logger.info(f"SSE fallback enabled: GET {paths.stream}, POST {paths.message}")
        await self._server.serve()

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
