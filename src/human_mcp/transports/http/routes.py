"""Streamable HTTP endpoint (/mcp), upload endpoints and health check."""

from __future__ import annotations

import logging
import re
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from ...config import HttpTransportConfig
from ...errors import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    SERVER_ERROR,
    handle_error,
    json_rpc_error,
)
from ...storage import ObjectStorage
from .asgi import (
    SESSION_HEADER,
    ResponseSender,
    is_initialize_request,
    parse_json,
    replay_receive,
    with_header,
)
from .session import SessionChecker, SessionManager

logger = logging.getLogger("human-mcp.http")

MAX_UPLOAD_BYTES = 100 * 1024 * 1024
_DATA_URI_PREFIX = re.compile(r"^data:.*?;base64,")


class StreamableHttpEndpoint:
    """ASGI app behind POST/GET/DELETE /mcp."""

    def __init__(
        self,
        mcp_server: Any,
        sessions: SessionManager,
        config: HttpTransportConfig,
        sse_sessions: SessionChecker | None = None,
    ):
        self._server = mcp_server
        self._sessions = sessions
        self._config = config
        self._sse_sessions = sse_sessions

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        sender = ResponseSender(send)
        method = scope["method"]
        logger.debug(f"Streamable HTTP {method} {scope['path']}")
        try:
            if method == "POST":
                await self._handle_post(scope, receive, sender)
            elif method == "GET":
                await self._handle_get(scope, receive, sender)
            elif method == "DELETE":
                await self._handle_delete(scope, receive, sender)
            else:
                response = json_rpc_error(SERVER_ERROR, "Method not allowed", 405)
                await response(scope, receive, sender)
        except Exception:
            logger.exception("MCP request error")
            if not sender.started:
                response = json_rpc_error(INTERNAL_ERROR, "Internal server error", 500)
                await response(scope, receive, sender)

    async def _handle_post(self, scope: Scope, receive: Receive, send: ResponseSender) -> None:
        if self._config.stateless:
            transport = await self._sessions.open_ephemeral(self._server)
            try:
                await transport.handle_request(scope, receive, send)
            finally:
                await transport.close()
            return

        request = Request(scope, receive)
        session_id = request.headers.get(SESSION_HEADER)

        if session_id and self._sse_sessions is not None and self._sse_sessions.has_session(session_id):
            response = json_rpc_error(INVALID_REQUEST, "Session ID is already in use by SSE transport", 400)
            await response(scope, receive, send)
            return

        transport = await self._sessions.get_transport(session_id)
        body = await request.body()
        receive = replay_receive(body, receive)

        if transport is None:
            if not is_initialize_request(parse_json(body)):
                response = json_rpc_error(SERVER_ERROR, "Bad Request: No valid session ID provided", 400)
                await response(scope, receive, send)
                return

            transport, session_id = await self._sessions.create_session(self._server)
            # a stale header would be rejected by the fresh transport
            scope = with_header(scope, SESSION_HEADER, None)
            send.add_header("Mcp-Session-Id", session_id)

        await transport.handle_request(scope, receive, send)

    async def _handle_get(self, scope: Scope, receive: Receive, send: ResponseSender) -> None:
        if self._config.stateless:
            response = json_rpc_error(SERVER_ERROR, "SSE not supported in stateless mode", 405)
            await response(scope, receive, send)
            return

        session_id = Request(scope).headers.get(SESSION_HEADER)
        transport = await self._sessions.get_transport(session_id)
        if transport is None:
            response = json_rpc_error(SERVER_ERROR, "Bad Request: Invalid or missing session ID", 400)
            await response(scope, receive, send)
            return

        await transport.handle_request(scope, receive, send)

    async def _handle_delete(self, scope: Scope, receive: Receive, send: ResponseSender) -> None:
        if self._config.stateless:
            response = json_rpc_error(
                SERVER_ERROR, "Session termination not applicable in stateless mode", 405
            )
            await response(scope, receive, send)
            return

        session_id = Request(scope).headers.get(SESSION_HEADER)
        await self._sessions.terminate_session(session_id)
        await Response(status_code=204)(scope, receive, send)


class UploadEndpoints:
    def __init__(self, storage: ObjectStorage | None):
        self._storage = storage

    def _not_configured(self) -> Response:
        return json_rpc_error(
            INTERNAL_ERROR,
            "Cloudflare R2 not configured. Please set up environment variables.",
            500,
        )

    async def upload(self, request: Request) -> Response:
        """Multipart upload of a single image or video (field ``file``)."""
        form = await request.form(max_files=1)
        try:
            upload = form.get("file")
            if upload is None or isinstance(upload, str):
                return json_rpc_error(INVALID_REQUEST, "No file uploaded", 400)

            mime_type = upload.content_type or ""
            if not (mime_type.startswith("image/") or mime_type.startswith("video/")):
                return json_rpc_error(
                    INVALID_REQUEST, "Invalid file type. Only images and videos are allowed.", 400
                )

            data = await upload.read()
            if len(data) > MAX_UPLOAD_BYTES:
                return json_rpc_error(INVALID_REQUEST, "File too large (limit 100MB)", 400)

            if self._storage is None:
                return self._not_configured()

            filename = upload.filename or "upload.bin"
            try:
                public_url = await self._storage.upload_file(data, filename)
            except Exception as e:
                error = handle_error(e)
                logger.error(f"Upload error: {error.message}")
                return json_rpc_error(INTERNAL_ERROR, error.message, error.status_code)
        finally:
            await form.close()

        return JSONResponse(
            {
                "jsonrpc": "2.0",
                "result": {
                    "success": True,
                    "url": public_url,
                    "originalName": filename,
                    "size": len(data),
                    "mimeType": mime_type,
                    "message": "File uploaded successfully to Cloudflare R2",
                },
                "id": None,
            }
        )

    async def upload_base64(self, request: Request) -> Response:
        payload = parse_json(await request.body())
        if not isinstance(payload, dict):
            payload = {}
        request_id = payload.get("id")
        data = payload.get("data")
        mime_type = payload.get("mimeType")

        if not data or not mime_type or not isinstance(data, str):
            return json_rpc_error(INVALID_REQUEST, "Missing required fields: data and mimeType", 400)
        if self._storage is None:
            return self._not_configured()

        try:
            public_url = await self._storage.upload_base64(
                _DATA_URI_PREFIX.sub("", data, count=1), mime_type, payload.get("filename")
            )
        except Exception as e:
            error = handle_error(e)
            logger.error(f"Base64 upload error: {error.message}")
            return json_rpc_error(
                INTERNAL_ERROR,
                f"Failed to upload base64 data: {error.message}",
                error.status_code,
                request_id=request_id,
            )

        return JSONResponse(
            {
                "jsonrpc": "2.0",
                "result": {
                    "success": True,
                    "url": public_url,
                    "message": "Base64 data uploaded successfully to Cloudflare R2",
                },
                "id": request_id,
            }
        )


class HealthEndpoint:
    def __init__(self, config: HttpTransportConfig, sessions: SessionManager, sse_sessions: Any = None):
        self._config = config
        self._sessions = sessions
        self._sse_sessions = sse_sessions

    async def check(self, request: Request) -> Response:
        body: dict[str, Any] = {
            "status": "healthy",
            "transport": "streamable-http",
            "sessionMode": self._config.session_mode,
            "sessions": self._sessions.get_session_count(),
        }
        if self._config.enable_sse_fallback:
            body["sseFallback"] = True
            body["ssePaths"] = {
                "stream": self._config.sse_paths.stream,
                "message": self._config.sse_paths.message,
            }
            if self._sse_sessions is not None:
                body["sseSessions"] = self._sse_sessions.get_session_count()
        return JSONResponse(body)


def create_routes(
    mcp_server: Any,
    sessions: SessionManager,
    config: HttpTransportConfig,
    *,
    storage: ObjectStorage | None = None,
    sse_sessions: Any = None,
) -> list[Route]:
    uploads = UploadEndpoints(storage)
    health = HealthEndpoint(config, sessions, sse_sessions)
    return [
        Route(
            "/mcp",
            StreamableHttpEndpoint(mcp_server, sessions, config, sse_sessions),
            methods=["GET", "POST", "DELETE"],
        ),
        Route("/mcp/upload", uploads.upload, methods=["POST"]),
        Route("/mcp/upload-base64", uploads.upload_base64, methods=["POST"]),
        Route("/health", health.check, methods=["GET"]),
    ]
