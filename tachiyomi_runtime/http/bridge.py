"""
HTTP bridge for hosted extensions

Compiled extensions perform network access through exactly one global
function installed in their namespace::

    tachiyomi_http_request(url, method, headers_json, body, want_bytes)
        -> {"status", "statusText", "headersJson", "body", "error"}

The call is synchronous from the extension's point of view. Failures never
raise into the extension; they come back through ``error``.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping, MutableMapping, Protocol

from ..config import TransportConfig
from ..errors import RuntimeBridgeError
from ..infra.rate_limit import RateLimiterRegistry
from .curl import CurlTransport
from .wire import WireResponse

logger = logging.getLogger(__name__)

HTTP_HOOK_NAME = "tachiyomi_http_request"

HttpHook = Callable[[str, str, str, "str | None", bool], dict[str, Any]]


class HttpBridge(Protocol):
    """Anything that can perform one blocking HTTP request"""

    def execute(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str],
        body: str | None,
        want_bytes: bool,
    ) -> WireResponse:
        ...


def create_transport(config: TransportConfig | None = None) -> HttpBridge:
    """Create the transport selected by ``config.backend``."""
    config = config or TransportConfig()
    if config.backend == "httpx":
        from .httpx_transport import HttpxTransport

        return HttpxTransport(config)
    if config.backend == "curl":
        return CurlTransport(config)
    raise ValueError(f"Unknown transport backend: {config.backend}")


def _decode_headers(headers_json: str | None) -> dict[str, str]:
    headers = json.loads(headers_json or "{}")
    if not isinstance(headers, dict):
        raise ValueError("headers must be a JSON object")
    return {str(k): str(v) for k, v in headers.items()}


def create_http_hook(
    transport: HttpBridge,
    rate_limiters: RateLimiterRegistry | None = None,
    debug: bool = False,
) -> HttpHook:
    """
    Build the hook installed into an extension namespace.

    Args:
        transport: Bridge that performs the request
        rate_limiters: Consulted before every request when given
        debug: Log every request at INFO
    """

    def tachiyomi_http_request(
        url: str,
        method: str,
        headers_json: str | None,
        body: str | None,
        want_bytes: bool,
    ) -> dict[str, Any]:
        if debug:
            logger.info(f"[HTTP] {method} {url}")
        else:
            logger.debug(f"[HTTP] {method} {url}")

        try:
            headers = _decode_headers(headers_json)
        except ValueError as e:
            return WireResponse.failure(f"Invalid request headers: {e}").to_hook_result()

        try:
            if rate_limiters is not None:
                rate_limiters.admit_url(url)
            response = transport.execute(url, method, headers, body, bool(want_bytes))
        except RuntimeBridgeError as e:
            logger.warning(f"HTTP request failed: {method} {url}: {e}")
            return WireResponse.failure(str(e)).to_hook_result()

        return response.to_hook_result()

    return tachiyomi_http_request


def install_http_bridge(namespace: MutableMapping[str, Any], hook: HttpHook) -> bool:
    """
    Install the HTTP hook into an extension namespace.

    Returns:
        True if the hook was installed, False if it was already present
    """
    existing = namespace.get(HTTP_HOOK_NAME)
    if existing is hook:
        return False
    if existing is not None:
        logger.warning("Replacing a different HTTP hook already installed in namespace")
    namespace[HTTP_HOOK_NAME] = hook
    return True
