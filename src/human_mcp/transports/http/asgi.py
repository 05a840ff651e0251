"""Small ASGI helpers shared by the routes and middleware."""

from __future__ import annotations

import json
from typing import Any

from starlette.types import Message, Receive, Scope, Send

SESSION_HEADER = "mcp-session-id"


def parse_json(body: bytes) -> Any | None:
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None


def is_initialize_request(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and payload.get("jsonrpc") == "2.0"
        and payload.get("method") == "initialize"
        and "id" in payload
    )


def replay_receive(body: bytes, receive: Receive) -> Receive:
    """A receive channel that yields an already-read body once, then defers to ``receive``."""
    replayed = False

    async def _receive() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive


def with_header(scope: Scope, name: str, value: str | None) -> Scope:
    """Copy of ``scope`` with ``name`` replaced, or removed when ``value`` is None."""
    key = name.lower().encode("latin-1")
    headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != key]
    if value is not None:
        headers.append((key, value.encode("latin-1")))
    return {**scope, "headers": headers}


class ResponseSender:
    """Wraps ``send`` to remember whether a response has started, optionally adding a header."""

    def __init__(self, send: Send):
        self._send = send
        self._extra_headers: list[tuple[bytes, bytes]] = []
        self.started = False

    def add_header(self, name: str, value: str) -> None:
        self._extra_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.started = True
            if self._extra_headers:
                headers = list(message.get("headers", []))
                present = {k.lower() for k, _ in headers}
                headers.extend((k, v) for k, v in self._extra_headers if k not in present)
                message = {**message, "headers": headers}
        await self._send(message)
