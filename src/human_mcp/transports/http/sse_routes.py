"""SSE fallback endpoints: GET <stream path> and POST <message path>?sessionId=."""

from __future__ import annotations

import logging
from typing import Any

from starlette.requests import Request
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from ...config import HttpTransportConfig
from ...errors import INTERNAL_ERROR, INVALID_REQUEST, SERVER_ERROR, json_rpc_error
from .asgi import ResponseSender
from .session import SessionChecker
from .sse import SSEManager

logger = logging.getLogger("human-mcp.sse")


def _stateless_rejection():
    return json_rpc_error(SERVER_ERROR, "SSE endpoints not available in stateless mode", 405)


class SseStreamEndpoint:
    def __init__(self, mcp_server: Any, sse_sessions: SSEManager, config: HttpTransportConfig):
        self._server = mcp_server
        self._sse_sessions = sse_sessions
        self._config = config

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self._config.stateless:
            await _stateless_rejection()(scope, receive, send)
            return

        logger.debug("SSE connection request received")
        request = Request(scope, receive)
        message_endpoint = f"{str(request.base_url).rstrip('/')}{self._config.sse_paths.message}"
        sender = ResponseSender(send)

        try:
            transport = self._sse_sessions.create_session(message_endpoint, scope, receive, sender)
        except Exception:
            logger.exception("Error establishing SSE connection")
            response = json_rpc_error(INTERNAL_ERROR, "Internal error establishing SSE connection", 500)
            await response(scope, receive, send)
            return

        try:
            async with transport.connect() as (read_stream, write_stream):
                await self._server.run(read_stream, write_stream, self._server.create_initialization_options())
        except Exception:
            logger.exception(f"SSE session {transport.session_id} ended with an error")
            if not sender.started:
                response = json_rpc_error(INTERNAL_ERROR, "Internal error establishing SSE connection", 500)
                await response(scope, receive, send)
        finally:
            await transport.close()


class SseMessageEndpoint:
    def __init__(self, sse_sessions: SSEManager, streamable_sessions: SessionChecker, config: HttpTransportConfig):
        self._sse_sessions = sse_sessions
        self._streamable_sessions = streamable_sessions
        self._config = config

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self._config.stateless:
            await _stateless_rejection()(scope, receive, send)
            return

        sender = ResponseSender(send)
        try:
            await self._handle(scope, receive, sender)
        except Exception:
            logger.exception("Error handling SSE message")
            if not sender.started:
                response = json_rpc_error(INTERNAL_ERROR, "Internal error processing message", 500)
                await response(scope, receive, sender)

    async def _handle(self, scope: Scope, receive: Receive, send: ResponseSender) -> None:
        session_id = Request(scope).query_params.get("sessionId")
        if not session_id:
            response = json_rpc_error(INVALID_REQUEST, "Missing sessionId query parameter", 400)
            await response(scope, receive, send)
            return

        if self._streamable_sessions.has_session(session_id):
            response = json_rpc_error(
                INVALID_REQUEST, "Session ID is already in use by streamable HTTP transport", 400
            )
            await response(scope, receive, send)
            return

        transport = self._sse_sessions.get_session(session_id)
        if transport is None:
            response = json_rpc_error(
                INVALID_REQUEST, f"No active SSE session found for sessionId: {session_id}", 400
            )
            await response(scope, receive, send)
            return

        await transport.handle_post_message(scope, receive, send)


def create_sse_routes(
    mcp_server: Any,
    sse_sessions: SSEManager,
    streamable_sessions: SessionChecker,
    config: HttpTransportConfig,
) -> list[Route]:
    paths = config.sse_paths
    return [
        Route(paths.stream, SseStreamEndpoint(mcp_server, sse_sessions, config), methods=["GET"]),
        Route(
            paths.message,
            SseMessageEndpoint(sse_sessions, streamable_sessions, config),
            methods=["POST"],
        ),
    ]
