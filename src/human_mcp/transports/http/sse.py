"""Legacy SSE transport, one object per client stream.

GET on the stream path opens an event stream whose first ``endpoint`` event
tells the client where to POST its messages (``<message path>?sessionId=<id>``).
The session ID is chosen by the transport itself.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Callable

import anyio
import mcp.types as types
from mcp.shared.message import ServerMessageMetadata, SessionMessage
from pydantic import ValidationError
from sse_starlette import EventSourceResponse
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from ...errors import INVALID_REQUEST, json_rpc_error
from .base import ManagedTransport

logger = logging.getLogger("human-mcp.sse")


class SseSessionTransport(ManagedTransport):
    def __init__(self, message_endpoint: str, scope: Scope, receive: Receive, send: Send):
        super().__init__(uuid.uuid4().hex)
        self._endpoint = message_endpoint
        self._scope = scope
        self._receive = receive
        self._send = send
        self._read_stream_writer, self._read_stream = anyio.create_memory_object_stream(0)
        self._write_stream, self._write_stream_reader = anyio.create_memory_object_stream(0)

    @property
    def endpoint_uri(self) -> str:
        separator = "&" if "?" in self._endpoint else "?"
        return f"{self._endpoint}{separator}sessionId={self.session_id}"

    @asynccontextmanager
    async def connect(self):
        """Stream server messages to the client; yields ``(read_stream, write_stream)`` for the MCP server."""
        sse_stream_writer, sse_stream_reader = anyio.create_memory_object_stream(0)

        async def sse_writer():
            async with sse_stream_writer, self._write_stream_reader:
                await sse_stream_writer.send({"event": "endpoint", "data": self.endpoint_uri})
                logger.debug(f"Sent endpoint event: {self.endpoint_uri}")

                async for session_message in self._write_stream_reader:
                    await sse_stream_writer.send(
                        {
                            "event": "message",
                            "data": session_message.message.model_dump_json(by_alias=True, exclude_none=True),
                        }
                    )

        async def response_wrapper():
            error: BaseException | None = None
            try:
                response = EventSourceResponse(content=sse_stream_reader, data_sender_callable=sse_writer)
                await response(self._scope, self._receive, self._send)
            except Exception as e:
                error = e
                logger.error(f"SSE stream {self.session_id} failed: {e}")
            finally:
                # ends the server loop reading from this session
                await self._read_stream_writer.aclose()
                await self._write_stream_reader.aclose()
                self._notify_closed(error)

        async with anyio.create_task_group() as tg:
            tg.start_soon(response_wrapper)
            yield self._read_stream, self._write_stream

    async def handle_post_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        body = await request.body()

        try:
            message = types.JSONRPCMessage.model_validate_json(body)
        except ValidationError as err:
            logger.warning(f"Failed to parse message for SSE session {self.session_id}: {err}")
            response = json_rpc_error(INVALID_REQUEST, "Could not parse message", 400)
            await response(scope, receive, send)
            return

        response = Response("Accepted", status_code=202)
        await response(scope, receive, send)
        # tools reach the HTTP request through ctx.request_context.request
        metadata = ServerMessageMetadata(request_context=request)
        await self._read_stream_writer.send(SessionMessage(message, metadata=metadata))

    async def close(self) -> None:
        await self._read_stream_writer.aclose()
        await self._write_stream.aclose()
        self._notify_closed()


class SSEManager:
    """Registry of live SSE sessions. In memory only: each is bound to an open socket."""

    def __init__(self, transport_factory: Callable[..., Any] | None = None):
        self._sessions: dict[str, Any] = {}
        self._factory = transport_factory or SseSessionTransport

    def has_session(self, session_id: str | None) -> bool:
        return bool(session_id) and session_id in self._sessions

    def create_session(self, message_endpoint: str, scope: Scope, receive: Receive, send: Send) -> Any:
        transport = self._factory(message_endpoint, scope, receive, send)
        transport.subscribe(self._on_transport_closed)
        self._sessions[transport.session_id] = transport
        logger.info(f"SSE session {transport.session_id} created")
        return transport

    def get_session(self, session_id: str | None) -> Any | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def get_session_count(self) -> int:
        return len(self._sessions)

    async def cleanup(self) -> None:
        """Close all sessions concurrently."""
        sessions = list(self._sessions.values())
        self._sessions.clear()

        results = await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                logger.warning(f"Error closing SSE session {session.session_id}: {result}")

        logger.info(f"SSEManager cleaned up ({len(sessions)} sessions closed).")

    def _on_transport_closed(self, transport: Any, error: BaseException | None) -> None:
        if self._sessions.get(transport.session_id) is transport:
            del self._sessions[transport.session_id]
        if error is not None:
            logger.error(f"SSE session {transport.session_id} error: {error}")
        else:
            logger.info(f"SSE session {transport.session_id} closed")
