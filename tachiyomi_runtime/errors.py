from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    EXTENSION_ERROR = "EXTENSION_ERROR"
    INVALID_ENVELOPE = "INVALID_ENVELOPE"
    HOST_LOAD_ERROR = "HOST_LOAD_ERROR"
    DISPOSED = "DISPOSED"
    RATE_LIMIT_TIMEOUT = "RATE_LIMIT_TIMEOUT"
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class RuntimeBridgeError(Exception):
    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}

    @property
    def kind(self) -> str:
        return self.error_code.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_code.value,
            "message": str(self),
            "details": self.details,
        }


class TransportFailure(RuntimeBridgeError):
    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        msg = message or "HTTP transport failed"
        super().__init__(msg, ErrorCode.TRANSPORT_FAILURE, details)


class ExtensionError(RuntimeBridgeError):
    """Raised for an envelope decoded with ``ok: false``.

    ``error`` keeps the raw payload so callers can inspect structured
    errors instead of parsing the message.
    """

    def __init__(self, message: str | None = None, error: Any = None, details: dict[str, Any] | None = None):
        msg = message or "Unknown extension error"
        merged = dict(details or {})
        if error is not None:
            merged.setdefault("error", error)
        super().__init__(msg, ErrorCode.EXTENSION_ERROR, merged)
        self.error = merged.get("error")


class EnvelopeDecodeError(RuntimeBridgeError):
    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        msg = message or "Invalid result envelope"
        super().__init__(msg, ErrorCode.INVALID_ENVELOPE, details)


class HostLoadError(RuntimeBridgeError):
    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        msg = message or "Could not load extension"
        super().__init__(msg, ErrorCode.HOST_LOAD_ERROR, details)


class DisposedError(RuntimeBridgeError):
    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        msg = message or "Extension has been disposed"
        super().__init__(msg, ErrorCode.DISPOSED, details)


class RateLimitTimeout(RuntimeBridgeError):
    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        msg = message or "Rate limit wait exceeded"
        super().__init__(msg, ErrorCode.RATE_LIMIT_TIMEOUT, details)


class SourceNotFoundError(RuntimeBridgeError):
    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        msg = message or "Source not found"
        super().__init__(msg, ErrorCode.SOURCE_NOT_FOUND, details)


_ERRORS_BY_CODE: dict[ErrorCode, type[RuntimeBridgeError]] = {
    ErrorCode.TRANSPORT_FAILURE: TransportFailure,
    ErrorCode.EXTENSION_ERROR: ExtensionError,
    ErrorCode.INVALID_ENVELOPE: EnvelopeDecodeError,
    ErrorCode.HOST_LOAD_ERROR: HostLoadError,
    ErrorCode.DISPOSED: DisposedError,
    ErrorCode.RATE_LIMIT_TIMEOUT: RateLimitTimeout,
    ErrorCode.SOURCE_NOT_FOUND: SourceNotFoundError,
}


def error_from_dict(payload: dict[str, Any]) -> RuntimeBridgeError:
    """Rebuild an exception from ``RuntimeBridgeError.to_dict()`` output."""
    message = str(payload.get("message") or "")
    details = payload.get("details") or {}
    try:
        code = ErrorCode(payload.get("error"))
    except ValueError:
        code = ErrorCode.INTERNAL_ERROR

    cls = _ERRORS_BY_CODE.get(code)
    if cls is None:
        return RuntimeBridgeError(message or "Internal error", code, details)
    return cls(message or None, details=details)


__all__ = [
    "ErrorCode",
    "RuntimeBridgeError",
    "TransportFailure",
    "ExtensionError",
    "EnvelopeDecodeError",
    "HostLoadError",
    "DisposedError",
    "RateLimitTimeout",
    "SourceNotFoundError",
    "error_from_dict",
]
