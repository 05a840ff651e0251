"""Cloudflare R2 (S3 compatible) uploads for files handed to the HTTP transport."""

from __future__ import annotations

import base64
import logging
import mimetypes
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

import anyio
import boto3

from .config import StorageConfig
from .errors import StorageError, StorageNotConfiguredError

logger = logging.getLogger("human-mcp.storage")

KEY_PREFIX = "human-mcp"


class ObjectStorage(Protocol):
    """What the HTTP layer needs from an object store."""

    async def upload_file(self, data: bytes, original_name: str) -> str: ...

    async def upload_base64(
        self, base64_data: str, mime_type: str, original_name: str | None = None
    ) -> str: ...


class CloudflareR2Storage:
    def __init__(self, config: StorageConfig, client: Any = None):
        if not config.is_configured:
            missing = [
                name
                for name, value in (
                    ("CLOUDFLARE_CDN_ACCESS_KEY", config.access_key),
                    ("CLOUDFLARE_CDN_SECRET_KEY", config.secret_key),
                    ("CLOUDFLARE_CDN_ENDPOINT_URL", config.endpoint_url),
                    ("CLOUDFLARE_CDN_BUCKET_NAME", config.bucket_name),
                    ("CLOUDFLARE_CDN_BASE_URL", config.base_url),
                )
                if not value
            ]
            raise StorageNotConfiguredError(missing)

        self.bucket_name = config.bucket_name
        self.base_url = config.base_url.rstrip("/")
        self._client = client or boto3.client(
            "s3",
            region_name="auto",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
        )

    def _put(self, key: str, data: bytes, content_type: str, original_name: str) -> None:
        self._client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type,
            Metadata={
                "originalName": original_name,
                "uploadedAt": datetime.now(timezone.utc).isoformat(),
                "source": "human-mcp-http-transport",
            },
        )

    async def upload_file(self, data: bytes, original_name: str) -> str:
        """Upload bytes and return their public URL."""
        _, ext = os.path.splitext(original_name)
        ext = ext.lstrip(".") or "bin"
        content_type = mimetypes.guess_type(original_name)[0] or "application/octet-stream"
        key = f"{KEY_PREFIX}/{uuid.uuid4()}.{ext}"

        try:
            # boto3 is blocking
            await anyio.to_thread.run_sync(self._put, key, data, content_type, original_name)
        except Exception as e:
            logger.error(f"Failed to upload to Cloudflare R2: {e}")
            raise StorageError(f"Failed to upload file: {e}") from e

        public_url = f"{self.base_url}/{key}"
        logger.info(f"File uploaded to Cloudflare R2: {public_url}")
        return public_url

    async def upload_base64(
        self, base64_data: str, mime_type: str, original_name: str | None = None
    ) -> str:
        try:
            data = base64.b64decode(base64_data, validate=False)
        except ValueError as e:
            raise StorageError(f"Invalid base64 payload: {e}") from e
        extension = mime_type.split("/")[-1] if "/" in mime_type else "bin"
        file_name = original_name or f"upload-{int(time.time() * 1000)}.{extension or 'bin'}"
        return await self.upload_file(data, file_name)


def get_storage(config: StorageConfig) -> CloudflareR2Storage | None:
    """Return a storage client, or None when R2 is not configured."""
    try:
        return CloudflareR2Storage(config)
    except StorageNotConfiguredError as e:
        logger.warning(f"Cloudflare R2 not configured: {e.message}")
        return None
