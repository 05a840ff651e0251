"""Per-request security gate: host allow-list, rate-limit hook, bearer token."""

from __future__ import annotations

import hmac
import logging
from typing import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

from ...config import SecurityConfig
from ...errors import INVALID_REQUEST, SERVER_ERROR, json_rpc_error

logger = logging.getLogger("human-mcp.security")

RateLimiter = Callable[[Request], Awaitable[bool]]


def _host_without_port(host: str) -> str:
    if host.startswith("["):
        # [::1]:3000
        end = host.find("]")
        return host[1:end] if end != -1 else host
    return host.split(":")[0]


class SecurityMiddleware:
    """Runs each check in order; the first failure answers the request."""

    def __init__(self, app: ASGIApp, config: SecurityConfig, rate_limiter: RateLimiter | None = None):
        self.app = app
        self.config = config
        self.rate_limiter = rate_limiter
        if config.enable_rate_limiting and rate_limiter is None:
            logger.warning("Rate limiting enabled but no rate limiter installed; requests are not limited")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        rejection = await self.check(Request(scope))
        if rejection is not None:
            await rejection(scope, receive, send)
            return
        await self.app(scope, receive, send)

    async def check(self, request: Request) -> Response | None:
        config = self.config

        if config.enable_dns_rebinding_protection:
            host = _host_without_port(request.headers.get("host", ""))
            if host and host not in config.allowed_hosts:
                logger.warning(f"Rejected request for host {host!r}")
                return json_rpc_error(INVALID_REQUEST, "Forbidden: Invalid host", 403)

        if config.enable_rate_limiting and self.rate_limiter is not None:
            if not await self.rate_limiter(request):
                return json_rpc_error(SERVER_ERROR, "Too many requests", 429)

        if config.secret:
            auth_header = request.headers.get("authorization")
            if not auth_header or not auth_header.startswith("Bearer "):
                return json_rpc_error(INVALID_REQUEST, "Unauthorized: Missing authentication", 401)
            token = auth_header[len("Bearer "):]
            if not hmac.compare_digest(token.encode(), config.secret.encode()):
                return json_rpc_error(INVALID_REQUEST, "Unauthorized: Invalid token", 401)

        return None
