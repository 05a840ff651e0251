"""Exception types and the JSON-RPC error envelope used by every HTTP error path."""

from __future__ import annotations

from typing import Any

from starlette.responses import JSONResponse

# JSON-RPC error codes
INVALID_REQUEST = -32600
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000


class HumanMCPError(Exception):
    def __init__(self, message: str, code: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class ValidationError(HumanMCPError):
    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR", 400)


class ProcessingError(HumanMCPError):
    def __init__(self, message: str):
        super().__init__(message, "PROCESSING_ERROR", 500)


class StorageError(HumanMCPError):
    def __init__(self, message: str):
        super().__init__(message, "STORAGE_ERROR", 500)


class StorageNotConfiguredError(StorageError):
    def __init__(self, missing: list[str]):
        super().__init__(
            f"Missing required Cloudflare R2 environment variables: {', '.join(missing)}"
        )
        self.missing = missing


def handle_error(error: BaseException) -> HumanMCPError:
    """Normalise any exception into a HumanMCPError."""
    if isinstance(error, HumanMCPError):
        return error
    if str(error):
        return ProcessingError(str(error))
    return ProcessingError("An unknown error occurred")


def error_body(
    code: int,
    message: str,
    data: dict[str, Any] | None = None,
    request_id: Any = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "error": error, "id": request_id}


def json_rpc_error(
    code: int,
    message: str,
    status_code: int,
    data: dict[str, Any] | None = None,
    request_id: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """JSON-RPC shaped error response; ``id`` is null when the request id is unknown."""
    return JSONResponse(
        error_body(code, message, data, request_id),
        status_code=status_code,
        headers=headers,
    )
