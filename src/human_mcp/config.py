"""Environment-driven configuration.

Everything is read once at startup by ``load_config()`` and handed to the
transport layer as frozen dataclasses.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

TRANSPORT_TYPES = ("stdio", "http", "both")
SESSION_MODES = ("stateful", "stateless")
LOG_LEVELS = ("debug", "info", "warn", "warning", "error")

DEFAULT_ALLOWED_HOSTS = ("127.0.0.1", "localhost")
DEFAULT_UPLOAD_TEMP_DIR = "/tmp/claude-uploads"

_R2_VARS = (
    "CLOUDFLARE_CDN_ACCESS_KEY",
    "CLOUDFLARE_CDN_SECRET_KEY",
    "CLOUDFLARE_CDN_ENDPOINT_URL",
    "CLOUDFLARE_CDN_BUCKET_NAME",
    "CLOUDFLARE_CDN_BASE_URL",
)


def _env_truthy(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = os.getenv(name, default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)} (got {value!r})")
    return value


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {value!r})") from None


@dataclass(frozen=True)
class SecurityConfig:
    enable_cors: bool = True
    cors_origins: tuple[str, ...] = ("*",)
    enable_dns_rebinding_protection: bool = False
    allowed_hosts: tuple[str, ...] = DEFAULT_ALLOWED_HOSTS
    enable_rate_limiting: bool = False
    secret: str | None = None


@dataclass(frozen=True)
class SsePaths:
    stream: str = "/sse"
    message: str = "/messages"


@dataclass(frozen=True)
class HttpTransportConfig:
    port: int = 3000
    host: str = "0.0.0.0"
    session_mode: str = "stateful"
    enable_json_response: bool = True
    enable_sse_fallback: bool = False
    sse_paths: SsePaths = field(default_factory=SsePaths)
    session_idle_timeout: float = 0.0
    security: SecurityConfig = field(default_factory=SecurityConfig)

    @property
    def stateless(self) -> bool:
        return self.session_mode == "stateless"


@dataclass(frozen=True)
class TransportConfig:
    type: str = "stdio"
    http: HttpTransportConfig | None = None

    @property
    def networked(self) -> bool:
        """True when an HTTP listener is part of this deployment."""
        return self.type in ("http", "both")


@dataclass(frozen=True)
class StorageConfig:
    access_key: str | None = None
    secret_key: str | None = None
    endpoint_url: str | None = None
    bucket_name: str | None = None
    base_url: str | None = None
    upload_temp_dir: str = DEFAULT_UPLOAD_TEMP_DIR

    @property
    def is_configured(self) -> bool:
        return all(
            (self.access_key, self.secret_key, self.endpoint_url, self.bucket_name, self.base_url)
        )


@dataclass(frozen=True)
class Config:
    transport: TransportConfig
    storage: StorageConfig
    log_level: str = "info"


def load_http_config() -> HttpTransportConfig:
    port = _env_int("HTTP_PORT", _env_int("PORT", 3000))
    security = SecurityConfig(
        enable_cors=_env_truthy("HTTP_CORS_ENABLED", default=True),
        cors_origins=_env_list("HTTP_CORS_ORIGINS", ("*",)),
        enable_dns_rebinding_protection=_env_truthy("HTTP_DNS_REBINDING_ENABLED"),
        allowed_hosts=_env_list("HTTP_ALLOWED_HOSTS", DEFAULT_ALLOWED_HOSTS),
        enable_rate_limiting=_env_truthy("HTTP_ENABLE_RATE_LIMITING"),
        secret=os.getenv("MCP_SECRET") or None,
    )
    return HttpTransportConfig(
        port=port,
        host=os.getenv("HTTP_HOST", "0.0.0.0"),
        session_mode=_env_choice("HTTP_SESSION_MODE", "stateful", SESSION_MODES),
        enable_json_response=_env_truthy("HTTP_ENABLE_JSON_RESPONSE", default=True),
        enable_sse_fallback=_env_truthy("HTTP_ENABLE_SSE_FALLBACK"),
        sse_paths=SsePaths(
            stream=os.getenv("HTTP_SSE_STREAM_PATH", "/sse"),
            message=os.getenv("HTTP_SSE_MESSAGE_PATH", "/messages"),
        ),
        session_idle_timeout=float(_env_int("HTTP_SESSION_IDLE_TIMEOUT", 0)),
        security=security,
    )


def load_storage_config() -> StorageConfig:
    access_key, secret_key, endpoint_url, bucket_name, base_url = (
        os.getenv(name) or None for name in _R2_VARS
    )
    return StorageConfig(
        access_key=access_key,
        secret_key=secret_key,
        endpoint_url=endpoint_url,
        bucket_name=bucket_name,
        base_url=base_url.rstrip("/") if base_url else None,
        upload_temp_dir=os.getenv("UPLOAD_TEMP_DIR", DEFAULT_UPLOAD_TEMP_DIR),
    )


def load_config() -> Config:
    transport_type = _env_choice("TRANSPORT_TYPE", "stdio", TRANSPORT_TYPES)
    http = load_http_config() if transport_type in ("http", "both") else None
    return Config(
        transport=TransportConfig(type=transport_type, http=http),
        storage=load_storage_config(),
        log_level=_env_choice("LOG_LEVEL", "info", LOG_LEVELS),
    )
