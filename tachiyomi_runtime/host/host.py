"""
Extension host

Loads compiled extension code into an isolated namespace, finds its
generated exports and exposes a synchronous, envelope-decoding call surface.

Runs inside the isolated execution context; nothing here is async.
"""
from __future__ import annotations

import json
import logging
from contextlib import nullcontext
from types import CodeType
from typing import Any, Optional

from ..config import RuntimeConfig
from ..envelope import unwrap
from ..errors import ExtensionError
from ..http.bridge import (
    HTTP_HOOK_NAME,
    HttpBridge,
    create_http_hook,
    create_transport,
    install_http_bridge,
)
from ..infra.rate_limit import RateLimiterRegistry
from .namespace import IsolatedNamespace, export_function, find_generated_exports
from .preferences import PreferenceStore

logger = logging.getLogger(__name__)

RATE_LIMIT_HOOK_NAME = "tachiyomi_rate_limit"
PREFERENCES_HOOK_NAME = "get_shared_preferences"


class ExtensionInstance:
    """
    Synchronous call surface over a module's generated exports.

    Every export returns envelope JSON; results are unwrapped here so callers
    get plain data or an ExtensionError. While an export runs, requests it
    makes are rate limited under the source passed as its first argument.
    """

    def __init__(
        self,
        exports: Any,
        namespace: IsolatedNamespace,
        rate_limiters: Optional[RateLimiterRegistry] = None,
    ):
        self._exports = exports
        self._namespace = namespace
        self._rate_limiters = rate_limiters
        self._sources: list[dict[str, Any]] | None = None

    def _call(self, name: str, *args: Any) -> Any:
        fn = export_function(self._exports, name)
        if fn is None:
            raise ExtensionError(f"Extension does not export {name}()")
        if self._rate_limiters is not None and args:
            scope = self._rate_limiters.bind_source(args[0])
        else:
            scope = nullcontext()
        try:
            with scope:
                envelope = fn(*args)
        except Exception as e:
            raise ExtensionError(
                f"{name}() raised {type(e).__name__}: {e}",
                details={"exception": type(e).__name__},
            ) from e
        return unwrap(envelope)

    def has_export(self, name: str) -> bool:
        return export_function(self._exports, name) is not None

    def get_sources(self) -> list[dict[str, Any]]:
        if self._sources is None:
            sources = self._call("getManifest")
            if not isinstance(sources, list):
                raise ExtensionError("getManifest() must return a list of sources")
            self._sources = sources
        return self._sources

    # Browse

    def get_popular_manga(self, source_id: str, page: int) -> Any:
        return self._call("getPopularManga", source_id, page)

    def get_latest_updates(self, source_id: str, page: int) -> Any:
        return self._call("getLatestUpdates", source_id, page)

    def search_manga(self, source_id: str, page: int, query: str) -> Any:
        return self._call("searchManga", source_id, page, query)

    def search_manga_with_filters(
        self, source_id: str, page: int, query: str, filter_state_json: str | None
    ) -> Any:
        if filter_state_json and filter_state_json != "[]":
            self.apply_filter_state(source_id, filter_state_json)
        return self.search_manga(source_id, page, query)

    # Content

    def get_manga_details(self, source_id: str, manga_url: str) -> Any:
        return self._call("getMangaDetails", source_id, manga_url)

    def get_chapter_list(self, source_id: str, manga_url: str) -> Any:
        return self._call("getChapterList", source_id, manga_url)

    def get_page_list(self, source_id: str, chapter_url: str) -> Any:
        return self._call("getPageList", source_id, chapter_url)

    def fetch_image(self, source_id: str, page_url: str, image_url: str) -> str:
        """Image bytes, base64-encoded, fetched through the source's client"""
        return self._call("fetchImage", source_id, page_url, image_url)

    def get_headers(self, source_id: str) -> dict[str, str]:
        return self._call("getHeaders", source_id)

    # Filters

    def get_filter_list(self, source_id: str) -> Any:
        return self._call("getFilterList", source_id)

    def reset_filters(self, source_id: str) -> Any:
        return self._call("resetFilters", source_id)

    def apply_filter_state(self, source_id: str, filter_state: str | list[Any]) -> Any:
        if not isinstance(filter_state, str):
            filter_state = json.dumps(filter_state)
        return self._call("applyFilterState", source_id, filter_state)

    # Settings

    def get_settings_schema(self, source_id: str) -> Any:
        if not self.has_export("getSettingsSchema"):
            return None
        return self._call("getSettingsSchema", source_id)

    def set_preference(self, source_id: str, key: str, value: Any) -> None:
        if not self.has_export("setPreference"):
            return
        self._call("setPreference", source_id, key, json.dumps(value))


class ExtensionHost:
    """
    Loads compiled extensions, one isolated namespace per load.

    Usage:
        host = ExtensionHost(CurlTransport())
        instance = host.load(code)
        sources = instance.get_sources()
    """

    def __init__(
        self,
        transport: Optional[HttpBridge] = None,
        rate_limiters: Optional[RateLimiterRegistry] = None,
        preferences: Optional[PreferenceStore] = None,
        config: Optional[RuntimeConfig] = None,
    ):
        self.config = config or RuntimeConfig.default()
        self.transport = transport or create_transport(self.config.transport)
        self.rate_limiters = rate_limiters or RateLimiterRegistry(self.config.rate_limit)
        self.preferences = preferences or PreferenceStore()
        self.http_hook = create_http_hook(
            self.transport,
            self.rate_limiters,
            debug=self.config.transport.debug_http,
        )
        self.namespace: IsolatedNamespace | None = None
        self.instance: ExtensionInstance | None = None

    def _rate_limit_hook(self):
        limiters = self.rate_limiters

        def tachiyomi_rate_limit(permits: int, period_ms: int = 1000, host: str | None = None) -> None:
            """Limit each source's requests, optionally only those to ``host``"""
            limiters.limit(permits, period_ms, host)

        return tachiyomi_rate_limit

    def prepare_namespace(self, namespace: IsolatedNamespace) -> None:
        """Install host hooks; safe to call again on the same namespace"""
        install_http_bridge(namespace.globals, self.http_hook)
        namespace.mark_installed(HTTP_HOOK_NAME)
        namespace.install(RATE_LIMIT_HOOK_NAME, self._rate_limit_hook())
        namespace.install(PREFERENCES_HOOK_NAME, self.preferences.get_shared_preferences)

    def load(self, code: str | bytes | CodeType, label: str = "extension") -> ExtensionInstance:
        """
        Execute compiled code in a fresh namespace and adopt its exports.

        Raises:
            HostLoadError: Code failed to run, or exports are missing/ambiguous
        """
        self.unload()

        namespace = IsolatedNamespace(label)
        self.prepare_namespace(namespace)
        try:
            namespace.execute(code)
            exports = find_generated_exports(namespace)
        except Exception:
            namespace.dispose()
            raise

        self.namespace = namespace
        self.instance = ExtensionInstance(exports, namespace, self.rate_limiters)
        logger.info(f"Loaded {label} into {namespace.module_name}")
        return self.instance

    def unload(self) -> None:
        if self.namespace is not None:
            self.namespace.dispose()
        self.namespace = None
        self.instance = None

    def close(self) -> None:
        self.unload()
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()
