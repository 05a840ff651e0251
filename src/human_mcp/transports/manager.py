import logging
from typing import Any, Optional

import anyio

from ..config import StorageConfig, TransportConfig
from ..storage import get_storage
from .http.server import HttpTransport

logger = logging.getLogger("human-mcp.transport")


class TransportManager:
    """Starts the configured transports for one FastMCP server.

    ``both`` runs stdio and HTTP side by side; ``start()`` returns once every
    started transport has finished or ``stop()`` was called.
    """

    def __init__(self, server: Any, config: TransportConfig, storage_config: Optional[StorageConfig] = None):
        self.server = server
        self.config = config
        self.storage_config = storage_config or StorageConfig()
        self.http: Optional[HttpTransport] = None
        self._stdio_scope: Optional[anyio.CancelScope] = None

        if config.networked and config.http is None:
            raise ValueError(f"Transport type {config.type!r} requires an HTTP configuration")

    def _build_http(self) -> HttpTransport:
        return HttpTransport(
            self.server._mcp_server,
            self.config.http,
            storage=get_storage(self.storage_config),
            networked=self.config.networked,
            upload_temp_dir=self.storage_config.upload_temp_dir,
        )

    async def _run_stdio(self) -> None:
        logger.info("Starting stdio transport")
        with anyio.CancelScope() as scope:
            self._stdio_scope = scope
            await self.server.run_stdio_async()
        self._stdio_scope = None
        logger.info("stdio transport closed")

    async def start(self) -> None:
        logger.info(f"Starting transport: {self.config.type}")
        if self.config.networked:
            self.http = self._build_http()

        async with anyio.create_task_group() as tg:
            if self.config.type in ("stdio", "both"):
                tg.start_soon(self._run_stdio)
            if self.http is not None:
                tg.start_soon(self.http.serve)

    def stop(self) -> None:
        """Ask running transports to exit. HTTP sessions drain through the app lifespan."""
        if self.http is not None:
            self.http.stop()
        if self._stdio_scope is not None:
            # stdio has no shutdown signal of its own
            self._stdio_scope.cancel()
