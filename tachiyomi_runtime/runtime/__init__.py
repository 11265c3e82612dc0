"""Async façade, execution contexts and the worker loop"""

from .context import ExecutionContext, ProcessContext, ThreadContext, create_context
from .facade import (
    AsyncSource,
    ExtensionState,
    LoadedExtension,
    load_extension,
    load_extension_from_dir,
    load_extension_from_url,
)
from .pending import PendingCall, PendingCalls
from .worker import Worker, create_default_host, serve

__all__ = [
    "ExecutionContext",
    "ProcessContext",
    "ThreadContext",
    "create_context",
    "AsyncSource",
    "ExtensionState",
    "LoadedExtension",
    "load_extension",
    "load_extension_from_dir",
    "load_extension_from_url",
    "PendingCall",
    "PendingCalls",
    "Worker",
    "create_default_host",
    "serve",
]
