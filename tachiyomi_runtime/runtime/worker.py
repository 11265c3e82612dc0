"""
Worker loop for the isolated execution context

Messages are plain dicts so they cross a process boundary as data:

    request:  {"id": str, "op": str, "args": list}
    reply:    {"id": str, "ok": True, "data": Any}
              {"id": str, "ok": False, "error": RuntimeBridgeError.to_dict()}

The loop handles one message at a time and replies before receiving the
next, so calls on one extension complete in dispatch order.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from ..config import RuntimeConfig
from ..errors import ErrorCode, HostLoadError, RuntimeBridgeError
from ..host import ExtensionHost, ExtensionInstance

logger = logging.getLogger(__name__)

HostFactory = Callable[[RuntimeConfig], ExtensionHost]

LOAD_OP = "load"
INIT_PREFERENCES_OP = "init_preferences"
FLUSH_PREF_CHANGES_OP = "flush_pref_changes"

# Ops forwarded to the loaded ExtensionInstance method of the same name
CAPABILITY_OPS = frozenset({
    "get_sources",
    "get_popular_manga",
    "get_latest_updates",
    "search_manga",
    "search_manga_with_filters",
    "get_manga_details",
    "get_chapter_list",
    "get_page_list",
    "fetch_image",
    "get_headers",
    "get_filter_list",
    "reset_filters",
    "apply_filter_state",
    "get_settings_schema",
    "set_preference",
})


def create_default_host(config: RuntimeConfig) -> ExtensionHost:
    """Host factory used when none is given; module-level so it pickles"""
    return ExtensionHost(config=config)


def ok_reply(correlation_id: str, data: Any) -> dict[str, Any]:
    return {"id": correlation_id, "ok": True, "data": data}


def error_reply(correlation_id: str, error: RuntimeBridgeError) -> dict[str, Any]:
    return {"id": correlation_id, "ok": False, "error": error.to_dict()}


class Worker:
    """Dispatches wire messages to one ExtensionHost"""

    def __init__(self, host_factory: HostFactory, config: RuntimeConfig):
        self._host_factory = host_factory
        self._config = config
        self._host: ExtensionHost | None = None
        self.instance: ExtensionInstance | None = None

    @property
    def host(self) -> ExtensionHost:
        if self._host is None:
            self._host = self._host_factory(self._config)
        return self._host

    def _load(self, code: Any, label: str = "extension") -> list[dict[str, Any]]:
        instance = self.host.load(code, label)
        sources = instance.get_sources()
        if not sources:
            self.host.unload()
            raise HostLoadError(f"Extension {label} does not expose any sources")
        self.instance = instance
        return sources

    def handle(self, op: str, args: list[Any]) -> Any:
        """Run one operation and return its plain-data result."""
        if op == LOAD_OP:
            return self._load(*args)

        if op == INIT_PREFERENCES_OP:
            name, values = args
            self.host.preferences.init(name, values or {})
            return None

        if op == FLUSH_PREF_CHANGES_OP:
            return self.host.preferences.flush_changes()

        if op in CAPABILITY_OPS:
            if self.instance is None:
                raise HostLoadError("No extension is loaded in this context")
            return getattr(self.instance, op)(*args)

        raise RuntimeBridgeError(f"Unknown operation: {op}", details={"op": op})

    def dispatch(self, message: dict[str, Any]) -> dict[str, Any]:
        """Handle one request message; always returns a reply message."""
        correlation_id = message.get("id", "")
        op = message.get("op", "")
        logger.debug(f"Dispatching {op} ({correlation_id})")

        try:
            return ok_reply(correlation_id, self.handle(op, list(message.get("args") or [])))
        except RuntimeBridgeError as e:
            logger.debug(f"{op} ({correlation_id}) failed: {e}")
            return error_reply(correlation_id, e)
        except Exception as e:
            logger.error(f"Unexpected error in {op} ({correlation_id}): {e}", exc_info=True)
            return error_reply(
                correlation_id,
                RuntimeBridgeError(
                    f"{type(e).__name__}: {e}",
                    ErrorCode.INTERNAL_ERROR,
                    {"op": op},
                ),
            )

    def close(self) -> None:
        if self._host is not None:
            self._host.close()
        self._host = None
        self.instance = None


def serve(
    receive: Callable[[], dict[str, Any] | None],
    reply: Callable[[dict[str, Any]], None],
    host_factory: HostFactory = create_default_host,
    config: RuntimeConfig | None = None,
) -> None:
    """
    Run the single-threaded worker loop until ``receive()`` returns None.

    Args:
        receive: Blocking call returning the next request, or None to stop
        reply: Delivers a reply message to the caller side
        host_factory: Builds the ExtensionHost on first use
        config: Runtime configuration handed to the factory
    """
    worker = Worker(host_factory, config or RuntimeConfig.default())
    try:
        while True:
            message = receive()
            if message is None:
                break
            reply(worker.dispatch(message))
    finally:
        worker.close()
        logger.debug("Worker loop stopped")
