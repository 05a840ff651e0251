"""Rewrites file paths in ``tools/call`` arguments into URLs the tools can fetch.

HTTP clients often pass paths that only exist on their side: sandbox paths
such as ``/mnt/user-data/uploads/photo.png`` or plain local paths. Those are
uploaded to object storage and replaced by the public URL before the request
reaches the MCP server.
"""

from __future__ import annotations

import json
import logging
import os
import posixpath
from typing import Any

import anyio
from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from ...config import DEFAULT_UPLOAD_TEMP_DIR
from ...errors import INTERNAL_ERROR, INVALID_PARAMS, StorageError, json_rpc_error
from ...storage import ObjectStorage
from .asgi import parse_json, replay_receive, with_header

logger = logging.getLogger("human-mcp.files")

FILE_FIELDS = ("source", "source1", "source2", "path", "filePath")
VIRTUAL_PREFIXES = ("/mnt/user-data/", "/mnt/")
PASSTHROUGH_PREFIXES = ("http://", "https://", "data:")

SUGGESTIONS = [
    "Upload the file using the /mcp/upload endpoint first",
    "Use a public URL instead of a local file path",
    "Convert the image to a base64 data URI",
    "Switch to stdio transport for local file access",
]


class UnresolvableFilePath(Exception):
    def __init__(self, path: str):
        super().__init__(f"Cannot access virtual path: {path}")
        self.path = path


def is_tool_call(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and payload.get("method") == "tools/call"
        and isinstance(payload.get("params"), dict)
        and isinstance(payload["params"].get("arguments"), dict)
    )


class FileInterceptorMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        storage: ObjectStorage | None = None,
        networked: bool = True,
        upload_temp_dir: str = DEFAULT_UPLOAD_TEMP_DIR,
    ):
        self.app = app
        self.storage = storage
        self.networked = networked
        self.upload_temp_dir = upload_temp_dir

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] != "POST":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        if "application/json" not in request.headers.get("content-type", ""):
            await self.app(scope, receive, send)
            return

        body = await request.body()
        payload = parse_json(body)
        if not is_tool_call(payload):
            await self.app(scope, replay_receive(body, receive), send)
            return

        try:
            changed = await self.rewrite_arguments(payload)
        except UnresolvableFilePath as e:
            logger.warning(str(e))
            response = json_rpc_error(
                INVALID_PARAMS,
                "File not accessible via HTTP transport",
                400,
                data={"path": e.path, "suggestions": SUGGESTIONS},
                request_id=payload.get("id"),
            )
            await response(scope, receive, send)
            return
        except (StorageError, OSError) as e:
            logger.error(f"Error processing virtual path: {e}")
            response = json_rpc_error(
                INTERNAL_ERROR, "Failed to process file", 500, request_id=payload.get("id")
            )
            await response(scope, receive, send)
            return

        if changed:
            body = json.dumps(payload).encode("utf-8")
            scope = with_header(scope, "content-length", str(len(body)))
        await self.app(scope, replay_receive(body, receive), send)

    async def rewrite_arguments(self, payload: dict[str, Any]) -> bool:
        """Substitute URLs for file paths in place. Returns True if anything changed."""
        params = payload["params"]
        args = params["arguments"]
        changed = False

        for field in FILE_FIELDS:
            value = args.get(field)
            if not value or not isinstance(value, str):
                continue

            if value.startswith(VIRTUAL_PREFIXES):
                logger.info(f"Intercepting virtual path: {value}")
                url = await self._resolve_virtual_path(value, field, params)
            elif not value.startswith(PASSTHROUGH_PREFIXES):
                url = await self._upload_local_path(value)
            else:
                continue

            if url is not None:
                args[field] = url
                changed = True

        return changed

    async def _resolve_virtual_path(self, file_path: str, field: str, params: dict[str, Any]) -> str | None:
        filename = posixpath.basename(file_path)
        staged = anyio.Path(self.upload_temp_dir) / filename

        if filename and await staged.is_file():
            if self.storage is None:
                logger.warning(f"Staged file found for {file_path} but object storage is not configured")
                return None
            data = await staged.read_bytes()
            public_url = await self.storage.upload_file(data, filename)
            await staged.unlink(missing_ok=True)
            logger.info(f"Replaced virtual path with CDN URL: {public_url}")
            return public_url

        file_data = params.get("fileData")
        if isinstance(file_data, dict) and file_data.get(field):
            if self.storage is None:
                logger.warning(f"Inline data for {file_path} ignored: object storage is not configured")
                return None
            mime_types = params.get("fileMimeTypes")
            mime_type = "image/jpeg"
            if isinstance(mime_types, dict) and mime_types.get(field):
                mime_type = mime_types[field]
            public_url = await self.storage.upload_base64(file_data[field], mime_type, filename or None)
            logger.info(f"Uploaded inline base64 to CDN: {public_url}")
            return public_url

        raise UnresolvableFilePath(file_path)

    async def _upload_local_path(self, file_path: str) -> str | None:
        if not self.networked or self.storage is None:
            return None

        try:
            data = await anyio.Path(file_path).read_bytes()
        except OSError as e:
            logger.warning(f"Local file not readable, leaving argument unchanged: {file_path} ({e})")
            return None

        try:
            public_url = await self.storage.upload_file(data, os.path.basename(file_path))
        except StorageError as e:
            logger.warning(f"Auto-upload failed for {file_path}: {e}")
            return None

        logger.info(f"Auto-uploaded local file to CDN: {public_url}")
        return public_url
