"""Stateful session lifecycle for the Streamable HTTP transport."""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Protocol

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.streamable_http import StreamableHTTPServerTransport
from mcp.server.transport_security import TransportSecuritySettings
from starlette.types import Receive, Scope, Send

from ...session_store import SessionRecord, SessionStore
from .base import ManagedTransport

logger = logging.getLogger("human-mcp.sessions")

# Host checks happen once in SecurityMiddleware, for every route
_SECURITY_SETTINGS = TransportSecuritySettings(enable_dns_rebinding_protection=False)


class SessionChecker(Protocol):
    """Read-only view one session registry exposes to the other transport's routes."""

    def has_session(self, session_id: str) -> bool: ...


class StreamableHttpSession(ManagedTransport):
    """One SDK Streamable HTTP transport plus the MCP server loop feeding it.

    A ``session_id`` of None means stateless: the transport serves a single
    request and is closed afterwards.
    """

    def __init__(self, server: Any, session_id: str | None = None, *, json_response: bool = True):
        super().__init__(session_id)
        self._server = server
        self._transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
            event_store=None,
            security_settings=_SECURITY_SETTINGS,
        )

    async def start(self, task_group: TaskGroup) -> None:
        """Connect to the MCP server. Returns once the transport accepts requests."""
        stateless = self.session_id is None

        async def run_server(*, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED):
            error: BaseException | None = None
            try:
                async with self._transport.connect() as (read_stream, write_stream):
                    task_status.started()
                    await self._server.run(
                        read_stream,
                        write_stream,
                        self._server.create_initialization_options(),
                        stateless=stateless,
                    )
            except Exception as e:
                error = e
                logger.error(f"Session {self.session_id} crashed: {e}", exc_info=True)
            finally:
                self._notify_closed(error)

        await task_group.start(run_server)

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._transport.handle_request(scope, receive, send)

    async def close(self) -> None:
        if not self._transport.is_terminated:
            await self._transport.terminate()
        self._notify_closed()


TransportFactory = Callable[..., Any]


class SessionManager:
    """Owns every live stateful session.

    Transports run inside a task group opened by ``run()``; the HTTP app
    enters it from its lifespan. A store, when given, mirrors session
    metadata and is consulted only when the in-memory map misses.
    """

    def __init__(
        self,
        *,
        json_response: bool = True,
        store: SessionStore | None = None,
        idle_timeout: float = 0.0,
        transport_factory: TransportFactory | None = None,
        reserved: SessionChecker | None = None,
    ):
        self._transports: dict[str, Any] = {}
        self._last_accessed: dict[str, float] = {}
        self._json_response = json_response
        self._store = store
        self._idle_timeout = idle_timeout
        self._factory = transport_factory or StreamableHttpSession
        self._reserved = reserved
        self._task_group: TaskGroup | None = None
        self._next_sleep: float = min(30.0, idle_timeout) if idle_timeout > 0 else 30.0

    # --- Lifecycle ---

    @asynccontextmanager
    async def run(self) -> AsyncIterator["SessionManager"]:
        if self._task_group is not None:
            raise RuntimeError("SessionManager is already running")

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            if self._idle_timeout > 0:
                tg.start_soon(self._reap_loop)
                logger.info(f"Session reaper started (idle timeout: {self._idle_timeout:.0f}s)")
            try:
                yield self
            finally:
                with anyio.CancelScope(shield=True):
                    await self.cleanup()
                tg.cancel_scope.cancel()
                self._task_group = None

    def _require_running(self) -> TaskGroup:
        if self._task_group is None:
            raise RuntimeError("SessionManager is not running; enter run() first")
        return self._task_group

    # --- Sessions ---

    def _generate_id(self) -> str:
        while True:
            session_id = str(uuid.uuid4())
            if session_id in self._transports:
                continue
            if self._reserved is not None and self._reserved.has_session(session_id):
                continue
            return session_id

    async def create_session(self, server: Any) -> tuple[Any, str]:
        """Create a session bound to ``server``; returns ``(transport, session_id)``."""
        task_group = self._require_running()
        session_id = self._generate_id()

        transport = self._factory(server, session_id, json_response=self._json_response)
        transport.subscribe(self._on_transport_closed)
        self._transports[session_id] = transport
        self._last_accessed[session_id] = time.monotonic()

        try:
            if self._store is not None:
                await self._store.set(
                    session_id,
                    SessionRecord(session_id=session_id, created_at=transport.created_at, transport=transport),
                )
            await transport.start(task_group)
        except Exception:
            self._forget(session_id)
            if self._store is not None:
                await self._delete_record(session_id)
            raise

        logger.info(f"Session created: {session_id}")
        return transport, session_id

    async def open_ephemeral(self, server: Any) -> Any:
        """Build and connect a transport with no session ID. It is not tracked."""
        task_group = self._require_running()
        transport = self._factory(server, None, json_response=self._json_response)
        await transport.start(task_group)
        return transport

    async def get_transport(self, session_id: str | None) -> Any | None:
        """Return the session's transport, or None if it is not known anywhere."""
        if not session_id:
            return None

        transport = self._transports.get(session_id)
        if transport is None and self._store is not None:
            record = await self._store.get(session_id)
            if record is not None and record.transport is not None and not record.transport.closed:
                transport = record.transport
                transport.subscribe(self._on_transport_closed)
                self._transports[session_id] = transport
                logger.debug(f"Rehydrated session from store: {session_id}")

        if transport is not None:
            self._last_accessed[session_id] = time.monotonic()
        return transport

    def has_session(self, session_id: str | None) -> bool:
        return bool(session_id) and session_id in self._transports

    def get_session_count(self) -> int:
        return len(self._transports)

    async def terminate_session(self, session_id: str | None) -> None:
        """Close and forget a session. Unknown IDs are a no-op."""
        if not session_id:
            return

        transport = self._forget(session_id)
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"Error closing session {session_id}: {e}")
            logger.info(f"Session terminated: {session_id}")

        if self._store is not None:
            await self._delete_record(session_id)

    async def cleanup(self) -> None:
        """Close every tracked transport and clear the store. Best effort."""
        transports = list(self._transports.items())
        self._transports.clear()
        self._last_accessed.clear()

        for session_id, transport in transports:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"Error closing session {session_id} during cleanup: {e}")

        if self._store is not None:
            try:
                await self._store.cleanup()
            except Exception as e:
                logger.warning(f"Error clearing session store: {e}")

        logger.info(f"SessionManager cleaned up ({len(transports)} sessions closed).")

    # --- Internal ---

    def _forget(self, session_id: str) -> Any | None:
        self._last_accessed.pop(session_id, None)
        return self._transports.pop(session_id, None)

    def _on_transport_closed(self, transport: Any, error: BaseException | None) -> None:
        session_id = transport.session_id
        if self._transports.get(session_id) is not transport:
            return
        self._forget(session_id)
        if error is not None:
            logger.warning(f"Session {session_id} closed after error: {error}")
        else:
            logger.info(f"Session closed by transport: {session_id}")
        if self._store is not None and self._task_group is not None:
            self._task_group.start_soon(self._delete_record, session_id)

    async def _delete_record(self, session_id: str) -> None:
        try:
            await self._store.delete(session_id)
        except Exception as e:
            logger.warning(f"Failed to delete session record {session_id}: {e}")

    async def _reap_loop(self) -> None:
        """Close sessions idle longer than the timeout, with an adaptive interval."""
        while True:
            await anyio.sleep(self._next_sleep)
            try:
                await self._reap()
            except Exception as e:
                logger.error(f"Error in session reaper: {e}")

    async def _reap(self) -> None:
        now = time.monotonic()
        to_remove = []
        next_expiry = float("inf")

        for session_id, last_accessed in self._last_accessed.items():
            age = now - last_accessed
            if age > self._idle_timeout:
                to_remove.append(session_id)
            else:
                next_expiry = min(next_expiry, self._idle_timeout - age)

        for session_id in to_remove:
            logger.info(f"Closing idle session: {session_id}")
            await self.terminate_session(session_id)

        if next_expiry == float("inf"):
            self._next_sleep = 60.0
        else:
            # sleep until just after the next expiry, within bounds
            self._next_sleep = max(5.0, min(next_expiry + 1.0, 60.0))

        logger.debug(f"Next idle check in {self._next_sleep:.1f}s ({len(self._transports)} active sessions)")
