"""
Result envelope codec

Every call into a compiled extension returns JSON text shaped as a tagged
union::

    {"ok": true, "data": ...}
    {"ok": false, "error": "message" | {...}}

The envelope is decoded on the near side of the isolation boundary so that
failures surface as typed exceptions instead of relying on exception
propagation across the boundary.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from .errors import EnvelopeDecodeError, ExtensionError


UNKNOWN_ERROR_MESSAGE = "Unknown extension error"


def _decode(envelope: str | bytes | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(envelope, Mapping):
        decoded: Any = envelope
    else:
        if isinstance(envelope, (bytes, bytearray)):
            envelope = envelope.decode("utf-8")
        if not isinstance(envelope, str):
            raise EnvelopeDecodeError(
                f"Expected envelope JSON text, got {type(envelope).__name__}"
            )
        try:
            decoded = json.loads(envelope)
        except json.JSONDecodeError as e:
            raise EnvelopeDecodeError(f"Envelope is not valid JSON: {e}") from e

    if not isinstance(decoded, Mapping) or not isinstance(decoded.get("ok"), bool):
        raise EnvelopeDecodeError("Envelope must be an object with a boolean 'ok' field")
    return decoded


def error_message(error: Any) -> str:
    """Human-readable message for an envelope error payload."""
    if isinstance(error, str):
        return error or UNKNOWN_ERROR_MESSAGE
    if error is None:
        return UNKNOWN_ERROR_MESSAGE
    try:
        return json.dumps(error, indent=2)
    except (TypeError, ValueError):
        return str(error)


def unwrap(envelope: str | bytes | Mapping[str, Any]) -> Any:
    """
    Decode an envelope and return its data.

    Args:
        envelope: Envelope JSON text, bytes, or an already decoded mapping

    Returns:
        The ``data`` member, unchanged (``None`` when absent)

    Raises:
        ExtensionError: The envelope carries ``ok: false``
        EnvelopeDecodeError: The input is not a well-formed envelope
    """
    decoded = _decode(envelope)
    if not decoded["ok"]:
        error = decoded.get("error")
        raise ExtensionError(error_message(error), error=error)
    return decoded.get("data")


def wrap_ok(data: Any) -> str:
    """Encode a success envelope"""
    return json.dumps({"ok": True, "data": data})


def wrap_error(error: Any) -> str:
    """Encode a failure envelope"""
    return json.dumps({"ok": False, "error": error})


__all__ = ["unwrap", "wrap_ok", "wrap_error", "error_message", "UNKNOWN_ERROR_MESSAGE"]
