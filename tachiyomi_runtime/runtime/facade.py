"""
Async façade over hosted extensions

The ExtensionHost runs inside an isolated execution context; this module
gives the caller's event loop a future-returning, per-source API over it.

Usage:
    ```python
    async with await load_extension(manifest, code) as ext:
        source = ext.get_source(ext.sources[0].id)
        page = await source.get_popular_manga(1)
    ```

Capability methods are plain functions returning futures, so a call on a
disposed extension or an unknown source raises before anything is sent.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import aiofiles
import httpx
from pydantic import BaseModel

from ..config import RuntimeConfig, load_config
from ..errors import (
    DisposedError,
    EnvelopeDecodeError,
    ErrorCode,
    HostLoadError,
    RuntimeBridgeError,
    SourceNotFoundError,
    TransportFailure,
    error_from_dict,
)
from ..types import (
    CHAPTER_LIST,
    FILTER_LIST,
    HEADERS,
    PAGE_LIST,
    SOURCE_LIST,
    FilterStateUpdate,
    Manga,
    MangasPage,
    Manifest,
    SettingsSchema,
    SourceInfo,
    build_filter_state_json,
)
from .context import ExecutionContext, create_context
from .pending import PendingCalls
from .worker import (
    FLUSH_PREF_CHANGES_OP,
    INIT_PREFERENCES_OP,
    LOAD_OP,
    HostFactory,
    create_default_host,
)

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
EXTENSION_FILE = "extension.py"


class ExtensionState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    DISPOSED = "disposed"


# ============================================================================
# Decoders (run on the caller side)
# ============================================================================

def _decode_manga(data: Any) -> Manga | None:
    return None if data is None else Manga.model_validate(data)


def _decode_headers(data: Any) -> dict[str, str]:
    return HEADERS.validate_python(data or {})


def _decode_flag(data: Any) -> bool:
    # Extensions may return nothing for a successful reset/apply
    return True if data is None else bool(data)


def _decode_image(data: Any) -> str:
    if not isinstance(data, str):
        raise EnvelopeDecodeError(
            f"fetch_image must return base64 text, got {type(data).__name__}"
        )
    return data


def _decode_settings(data: Any) -> SettingsSchema | None:
    if data is None:
        return None
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise EnvelopeDecodeError(f"Settings schema is not valid JSON: {e}") from e
    if isinstance(data, list):
        data = {"preferences": data}
    return SettingsSchema.model_validate(data)


def _filter_state_json(filters: Any) -> str | None:
    """Accept JSON text, filter models, update models or plain dicts"""
    if filters is None or isinstance(filters, str):
        return filters
    filters = list(filters)
    if filters and all(isinstance(f, FilterStateUpdate) for f in filters):
        return json.dumps([f.model_dump(exclude_none=True) for f in filters])
    if filters and all(isinstance(f, BaseModel) for f in filters):
        return build_filter_state_json(filters)
    return json.dumps(filters)


# ============================================================================
# Loaded extension
# ============================================================================

class LoadedExtension:
    """
    Handle to one extension running in its own execution context.

    States: UNLOADED -> LOADING -> READY -> DISPOSED. A failed load returns
    to UNLOADED. DISPOSED is terminal.
    """

    def __init__(
        self,
        manifest: Manifest,
        context: ExecutionContext,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.manifest = manifest
        self.sources: list[SourceInfo] = []
        self._context = context
        self._loop = loop or asyncio.get_running_loop()
        self._pending = PendingCalls(prefix=manifest.pkg or "call")
        self._state = ExtensionState.UNLOADED
        self._started = False

    @property
    def state(self) -> ExtensionState:
        return self._state

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Context plumbing
    # ------------------------------------------------------------------

    def _on_reply(self, message: dict[str, Any]) -> None:
        # Called on the context's thread
        try:
            self._loop.call_soon_threadsafe(self._deliver, message)
        except RuntimeError:
            logger.debug(f"Event loop closed; dropping reply {message.get('id')}")

    def _on_exit(self, exitcode: Optional[int]) -> None:
        try:
            self._loop.call_soon_threadsafe(self._context_exited, exitcode)
        except RuntimeError:
            logger.debug("Event loop closed; dropping context exit notice")

    def _deliver(self, message: dict[str, Any]) -> None:
        if self._state is ExtensionState.DISPOSED:
            return

        correlation_id = message.get("id", "")
        if message.get("ok"):
            delivered = self._pending.resolve(correlation_id, message.get("data"))
        else:
            delivered = self._pending.reject(
                correlation_id, error_from_dict(message.get("error") or {})
            )
        if not delivered:
            logger.debug(f"Dropping reply for unknown call {correlation_id}")

    def _context_exited(self, exitcode: Optional[int]) -> None:
        if self._state is ExtensionState.DISPOSED:
            return
        logger.error(f"Execution context for {self.manifest.pkg} exited (code {exitcode})")
        self._pending.reject_all(
            lambda call: RuntimeBridgeError(
                f"Execution context exited during {call.op}",
                ErrorCode.INTERNAL_ERROR,
                {"op": call.op, "exitcode": exitcode},
            )
        )
        self.dispose()

    def _send(
        self,
        op: str,
        args: Sequence[Any] = (),
        source_id: Optional[str] = None,
        decode=None,
    ) -> asyncio.Future:
        call = self._pending.create(self._loop, op, source_id, decode)
        self._context.send({"id": call.correlation_id, "op": op, "args": list(args)})
        return call.future

    def _ensure_ready(self) -> None:
        if self._state is ExtensionState.DISPOSED:
            raise DisposedError(
                f"Extension {self.manifest.pkg} has been disposed",
                details={"pkg": self.manifest.pkg},
            )
        if self._state is not ExtensionState.READY:
            raise HostLoadError(
                f"Extension {self.manifest.pkg} is not ready ({self._state.value})"
            )

    def _source_key(self, source_id: str | int) -> str:
        key = str(source_id)
        if not any(source.id == key for source in self.sources):
            raise SourceNotFoundError(
                f"Source {key} not found in {self.manifest.pkg}",
                details={"source_id": key, "pkg": self.manifest.pkg},
            )
        return key

    def _call(self, op: str, source_id: str | int, *args: Any, decode=None) -> asyncio.Future:
        self._ensure_ready()
        key = self._source_key(source_id)
        return self._send(op, (key, *args), source_id=key, decode=decode)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(
        self,
        module_code: str | bytes,
        label: Optional[str] = None,
        preferences: Optional[Mapping[str, Any]] = None,
    ) -> "LoadedExtension":
        """
        Load module code into the context and read its sources.

        Args:
            module_code: Compiled extension code
            label: Name used in logs and tracebacks (defaults to the package)
            preferences: Optional ``{"name", "values"}`` seeded before loading

        Raises:
            HostLoadError: Module failed to run or exposes no usable exports
            DisposedError: The extension was disposed while loading
        """
        if self._state is ExtensionState.DISPOSED:
            raise DisposedError(f"Extension {self.manifest.pkg} has been disposed")
        if self._state is not ExtensionState.UNLOADED:
            raise HostLoadError(f"Extension {self.manifest.pkg} is already {self._state.value}")

        self._state = ExtensionState.LOADING
        if not self._started:
            self._context.start(self._on_reply, self._on_exit)
            self._started = True

        label = label or self.manifest.pkg
        try:
            if preferences:
                await self._send(
                    INIT_PREFERENCES_OP,
                    (preferences["name"], dict(preferences.get("values") or {})),
                )
            sources = await self._send(
                LOAD_OP, (module_code, label), decode=SOURCE_LIST.validate_python
            )
        except BaseException:
            if self._state is ExtensionState.LOADING:
                self._state = ExtensionState.UNLOADED
            raise

        if self._state is not ExtensionState.LOADING:
            raise DisposedError(f"Extension {self.manifest.pkg} was disposed while loading")

        self.sources = sources
        self._state = ExtensionState.READY
        logger.info(
            f"Loaded extension {self.manifest.name} {self.manifest.version} "
            f"with {len(sources)} source(s)"
        )
        return self

    def dispose(self) -> None:
        """Reject outstanding calls and tear down the context; idempotent"""
        if self._state is ExtensionState.DISPOSED:
            return
        self._state = ExtensionState.DISPOSED

        pkg = self.manifest.pkg
        self._pending.reject_all(
            lambda call: DisposedError(
                f"{call.op} cancelled: extension {pkg} was disposed",
                details={"op": call.op, "pkg": pkg},
            )
        )
        self._context.close()
        logger.info(f"Disposed extension {pkg}")

    async def __aenter__(self) -> "LoadedExtension":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def get_source(self, source_id: str | int) -> "AsyncSource":
        self._ensure_ready()
        key = self._source_key(source_id)
        info = next(source for source in self.sources if source.id == key)
        return AsyncSource(self, info)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def get_popular_manga(self, source_id: str | int, page: int = 1) -> asyncio.Future:
        return self._call("get_popular_manga", source_id, page, decode=MangasPage.model_validate)

    def get_latest_updates(self, source_id: str | int, page: int = 1) -> asyncio.Future:
        return self._call("get_latest_updates", source_id, page, decode=MangasPage.model_validate)

    def search_manga(self, source_id: str | int, page: int, query: str) -> asyncio.Future:
        return self._call("search_manga", source_id, page, query, decode=MangasPage.model_validate)

    def search_manga_with_filters(
        self, source_id: str | int, page: int, query: str, filters: Any = None
    ) -> asyncio.Future:
        """Apply ``filters`` (JSON text or a filter list), then search"""
        return self._call(
            "search_manga_with_filters",
            source_id,
            page,
            query,
            _filter_state_json(filters),
            decode=MangasPage.model_validate,
        )

    def get_manga_details(self, source_id: str | int, manga_url: str) -> asyncio.Future:
        return self._call("get_manga_details", source_id, manga_url, decode=_decode_manga)

    def get_chapter_list(self, source_id: str | int, manga_url: str) -> asyncio.Future:
        return self._call("get_chapter_list", source_id, manga_url, decode=CHAPTER_LIST.validate_python)

    def get_page_list(self, source_id: str | int, chapter_url: str) -> asyncio.Future:
        return self._call("get_page_list", source_id, chapter_url, decode=PAGE_LIST.validate_python)

    def fetch_image(self, source_id: str | int, page_url: str, image_url: str) -> asyncio.Future:
        """Resolves to the image as base64 text"""
        return self._call("fetch_image", source_id, page_url, image_url, decode=_decode_image)

    def get_headers(self, source_id: str | int) -> asyncio.Future:
        return self._call("get_headers", source_id, decode=_decode_headers)

    def get_filter_list(self, source_id: str | int) -> asyncio.Future:
        return self._call("get_filter_list", source_id, decode=FILTER_LIST.validate_python)

    def reset_filters(self, source_id: str | int) -> asyncio.Future:
        return self._call("reset_filters", source_id, decode=_decode_flag)

    def apply_filter_state(self, source_id: str | int, filters: Any) -> asyncio.Future:
        return self._call(
            "apply_filter_state", source_id, _filter_state_json(filters) or "[]", decode=_decode_flag
        )

    def get_settings_schema(self, source_id: str | int) -> asyncio.Future:
        return self._call("get_settings_schema", source_id, decode=_decode_settings)

    def set_preference(self, source_id: str | int, key: str, value: Any) -> asyncio.Future:
        return self._call("set_preference", source_id, key, value)

    def init_preferences(self, name: str, values: Mapping[str, Any]) -> asyncio.Future:
        self._ensure_ready()
        return self._send(INIT_PREFERENCES_OP, (name, dict(values)))

    def flush_pref_changes(self) -> asyncio.Future:
        """Resolves to ``[{"name", "key", "value"}, ...]`` committed since the last flush"""
        self._ensure_ready()
        return self._send(FLUSH_PREF_CHANGES_OP)


class AsyncSource:
    """One source of a LoadedExtension with the source id bound"""

    def __init__(self, extension: LoadedExtension, info: SourceInfo):
        self.extension = extension
        self.info = info
        self.source_id = info.id

    @property
    def manifest(self) -> Manifest:
        return self.extension.manifest

    def get_popular_manga(self, page: int = 1) -> asyncio.Future:
        return self.extension.get_popular_manga(self.source_id, page)

    def get_latest_updates(self, page: int = 1) -> asyncio.Future:
        return self.extension.get_latest_updates(self.source_id, page)

    def search_manga(self, page: int, query: str) -> asyncio.Future:
        return self.extension.search_manga(self.source_id, page, query)

    def search_manga_with_filters(self, page: int, query: str, filters: Any = None) -> asyncio.Future:
        return self.extension.search_manga_with_filters(self.source_id, page, query, filters)

    def get_manga_details(self, manga_url: str) -> asyncio.Future:
        return self.extension.get_manga_details(self.source_id, manga_url)

    def get_chapter_list(self, manga_url: str) -> asyncio.Future:
        return self.extension.get_chapter_list(self.source_id, manga_url)

    def get_page_list(self, chapter_url: str) -> asyncio.Future:
        return self.extension.get_page_list(self.source_id, chapter_url)

    def fetch_image(self, page_url: str, image_url: str) -> asyncio.Future:
        return self.extension.fetch_image(self.source_id, page_url, image_url)

    def get_headers(self) -> asyncio.Future:
        return self.extension.get_headers(self.source_id)

    def get_filter_list(self) -> asyncio.Future:
        return self.extension.get_filter_list(self.source_id)

    def reset_filters(self) -> asyncio.Future:
        return self.extension.reset_filters(self.source_id)

    def apply_filter_state(self, filters: Any) -> asyncio.Future:
        return self.extension.apply_filter_state(self.source_id, filters)

    def get_settings_schema(self) -> asyncio.Future:
        return self.extension.get_settings_schema(self.source_id)

    def set_preference(self, key: str, value: Any) -> asyncio.Future:
        return self.extension.set_preference(self.source_id, key, value)

    def init_preferences(self, name: str, values: Mapping[str, Any]) -> asyncio.Future:
        return self.extension.init_preferences(name, values)

    def flush_pref_changes(self) -> asyncio.Future:
        return self.extension.flush_pref_changes()

    def __repr__(self) -> str:
        return f"AsyncSource(id={self.source_id!r}, name={self.info.name!r})"


# ============================================================================
# Entry points
# ============================================================================

async def load_extension(
    manifest: Manifest | dict[str, Any] | str | bytes,
    module_code: str | bytes,
    *,
    config: Optional[RuntimeConfig] = None,
    preferences: Optional[Mapping[str, Any]] = None,
    proxy_url: Optional[str] = None,
    context: Optional[ExecutionContext] = None,
    host_factory: HostFactory = create_default_host,
) -> LoadedExtension:
    """
    Load a compiled extension into a fresh isolated context.

    Args:
        manifest: Manifest model, dict or JSON text
        module_code: Compiled extension code
        config: Runtime configuration (loaded from file/env when omitted)
        preferences: Optional ``{"name", "values"}`` seeded before loading
        proxy_url: Overrides ``config.transport.proxy_url``
        context: Pre-built execution context; created from ``config`` otherwise
        host_factory: Builds the ExtensionHost inside the context

    Returns:
        A READY LoadedExtension; dispose() it when done

    Raises:
        HostLoadError: Module failed to run or exposes no usable exports
    """
    manifest = Manifest.parse(manifest)
    config = config or load_config()
    if proxy_url is not None:
        config = replace(config, transport=replace(config.transport, proxy_url=proxy_url))

    context = context or create_context(config, host_factory, label=manifest.pkg)
    extension = LoadedExtension(manifest, context)
    try:
        await extension.load(module_code, preferences=preferences)
    except BaseException:
        extension.dispose()
        raise
    return extension


async def load_extension_from_url(
    url: str,
    manifest: Manifest | dict[str, Any] | str | bytes,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
    **kwargs: Any,
) -> LoadedExtension:
    """Fetch module code over HTTP, then load it (see load_extension)"""
    try:
        if client is None:
            async with httpx.AsyncClient(follow_redirects=True, timeout=timeout) as owned:
                response = await owned.get(url)
        else:
            response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise TransportFailure(
            f"Could not fetch extension code from {url}: {e}", details={"url": url}
        ) from e

    logger.debug(f"Fetched {len(response.content)} bytes of extension code from {url}")
    return await load_extension(manifest, response.text, **kwargs)


async def load_extension_from_dir(path: str | Path, **kwargs: Any) -> LoadedExtension:
    """Load a built extension directory holding manifest.json and extension.py"""
    directory = Path(path)
    manifest_path = directory / MANIFEST_FILE
    code_path = directory / EXTENSION_FILE

    try:
        async with aiofiles.open(manifest_path, "r", encoding="utf-8") as f:
            manifest_text = await f.read()
        async with aiofiles.open(code_path, "r", encoding="utf-8") as f:
            module_code = await f.read()
    except OSError as e:
        raise HostLoadError(
            f"Could not read extension from {directory}: {e}", details={"path": str(directory)}
        ) from e

    try:
        manifest = Manifest.parse(manifest_text)
    except ValueError as e:
        raise HostLoadError(f"Invalid {manifest_path}: {e}", details={"path": str(manifest_path)}) from e

    return await load_extension(manifest, module_code, **kwargs)
