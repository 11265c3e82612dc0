"""
Isolated global namespaces for compiled extensions

Each load executes the module's code into a freshly allocated globals dict,
so two extensions in one process never collide on global names. This is a
name-isolation boundary only, not a security sandbox.
"""
from __future__ import annotations

import builtins
import itertools
import logging
from collections.abc import Mapping
from types import CodeType
from typing import Any

from ..errors import HostLoadError

logger = logging.getLogger(__name__)

_namespace_ids = itertools.count(1)

MARKER_PATH = ("tachiyomi", "generated")


class IsolatedNamespace:
    """
    A disposable global namespace for one load of one extension.

    Example:
        ```python
        ns = IsolatedNamespace("en.example")
        ns.install("tachiyomi_http_request", hook)
        ns.execute(code)
        exports = find_generated_exports(ns)
        ```
    """

    def __init__(self, label: str = "extension"):
        self.id = next(_namespace_ids)
        self.label = label
        self.module_name = f"tachiyomi_ext_{self.id}"
        self.globals: dict[str, Any] = {
            "__name__": self.module_name,
            "__builtins__": builtins,
            "__doc__": None,
        }
        self._installed: set[str] = set()
        self.disposed = False

    def install(self, name: str, value: Any) -> None:
        """Expose a host-provided global to the module"""
        self.globals[name] = value
        self._installed.add(name)

    def mark_installed(self, name: str) -> None:
        """Treat a global set directly on ``globals`` as host-provided"""
        self._installed.add(name)

    def is_installed(self, name: str) -> bool:
        return name in self._installed

    def execute(self, code: str | bytes | CodeType, filename: str | None = None) -> None:
        """Run module code at top level of this namespace."""
        if self.disposed:
            raise HostLoadError(f"Namespace {self.module_name} has been disposed")

        if isinstance(code, (bytes, bytearray)):
            code = code.decode("utf-8")

        try:
            compiled = code if isinstance(code, CodeType) else compile(
                code, filename or f"<{self.label}>", "exec"
            )
            exec(compiled, self.globals)
        except Exception as e:
            raise HostLoadError(
                f"Extension code for {self.label} failed to execute: {e}",
                details={"exception": type(e).__name__},
            ) from e

    def bindings(self) -> dict[str, Any]:
        """Top-level names created by the module (host-installed names excluded)"""
        return {
            name: value
            for name, value in self.globals.items()
            if not (name.startswith("__") and name.endswith("__"))
            and name not in self._installed
        }

    def dispose(self) -> None:
        self.globals.clear()
        self._installed.clear()
        self.disposed = True


def _member(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(name)
    try:
        return getattr(value, name, None)
    except Exception:
        # Arbitrary objects may raise from __getattr__; they are not markers
        return None


def generated_exports_of(value: Any) -> Any:
    """Follow ``value.tachiyomi.generated``; None when the marker is absent"""
    for name in MARKER_PATH:
        value = _member(value, name)
        if value is None:
            return None
    return value


def find_generated_exports(namespace: IsolatedNamespace) -> Any:
    """
    Locate the generated-exports marker among top-level bindings.

    Raises:
        HostLoadError: No marker, several distinct markers, or a marker
            without a callable ``getManifest``
    """
    candidates: dict[int, tuple[str, Any]] = {}
    for name, value in namespace.bindings().items():
        exports = generated_exports_of(value)
        if exports is not None:
            candidates.setdefault(id(exports), (name, exports))

    if not candidates:
        raise HostLoadError("Invalid extension: could not find tachiyomi.generated exports")

    if len(candidates) > 1:
        names = sorted(name for name, _ in candidates.values())
        raise HostLoadError(
            f"Ambiguous extension exports: {', '.join(names)} all expose tachiyomi.generated",
            details={"candidates": names},
        )

    name, exports = next(iter(candidates.values()))
    if not callable(_member(exports, "getManifest")):
        raise HostLoadError(f"Invalid extension: {name}.tachiyomi.generated has no getManifest()")

    logger.debug(f"Found generated exports on '{name}' in {namespace.module_name}")
    return exports


def export_function(exports: Any, name: str) -> Any:
    """Callable export by name, or None"""
    fn = _member(exports, name)
    return fn if callable(fn) else None
