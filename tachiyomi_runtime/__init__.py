"""
tachiyomi-runtime: run compiled Tachiyomi extensions from asyncio code.

Each extension is executed in its own isolated context; network access goes
through a curl-backed HTTP hook and every call result crosses the boundary
as an ``{ok, data, error}`` envelope.
"""

from __future__ import annotations

from .config import RuntimeConfig, load_config
from .envelope import unwrap, wrap_error, wrap_ok
from .errors import (
    DisposedError,
    EnvelopeDecodeError,
    ErrorCode,
    ExtensionError,
    HostLoadError,
    RateLimitTimeout,
    RuntimeBridgeError,
    SourceNotFoundError,
    TransportFailure,
)
from .host import ExtensionHost, ExtensionInstance
from .runtime import (
    AsyncSource,
    ExtensionState,
    LoadedExtension,
    load_extension,
    load_extension_from_dir,
    load_extension_from_url,
)
from .types import Chapter, Manga, MangasPage, Manifest, Page, SourceInfo

__version__ = "0.1.0"

__all__ = [
    "RuntimeConfig",
    "load_config",
    "unwrap",
    "wrap_ok",
    "wrap_error",
    "ErrorCode",
    "RuntimeBridgeError",
    "TransportFailure",
    "ExtensionError",
    "EnvelopeDecodeError",
    "HostLoadError",
    "DisposedError",
    "RateLimitTimeout",
    "SourceNotFoundError",
    "ExtensionHost",
    "ExtensionInstance",
    "AsyncSource",
    "ExtensionState",
    "LoadedExtension",
    "load_extension",
    "load_extension_from_dir",
    "load_extension_from_url",
    "Manifest",
    "SourceInfo",
    "Manga",
    "Chapter",
    "Page",
    "MangasPage",
]
