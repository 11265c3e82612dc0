"""In-process HTTP bridge backed by httpx"""
from __future__ import annotations

import logging
from typing import Mapping

import httpx

from ..config import TransportConfig
from ..errors import TransportFailure
from .curl import apply_proxy
from .wire import WireResponse, decode_body

logger = logging.getLogger(__name__)


class HttpxTransport:
    """
    HTTP bridge using a synchronous ``httpx.Client``.

    Same contract as CurlTransport. The client is created lazily and owned
    by the isolated context that created the transport.
    """

    def __init__(self, config: TransportConfig | None = None, client: httpx.Client | None = None):
        self.config = config or TransportConfig()
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                follow_redirects=True,
                timeout=self.config.max_time_s,
            )
        return self._client

    def execute(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str],
        body: str | None,
        want_bytes: bool,
    ) -> WireResponse:
        target = apply_proxy(url, self.config.proxy_url)
        try:
            response = self.client.request(
                (method or "GET").upper(),
                target,
                headers=dict(headers),
                content=body.encode("utf-8") if body is not None else None,
            )
        except httpx.HTTPError as e:
            raise TransportFailure(f"HTTP request to {url} failed: {e}", details={"url": url}) from e

        content = response.content
        if len(content) > self.config.max_output_bytes:
            raise TransportFailure(
                f"Response for {url} exceeds {self.config.max_output_bytes} bytes",
                details={"url": url, "size": len(content)},
            )

        headers_out: dict[str, str] = {}
        for key, value in response.headers.multi_items():
            key = key.lower()
            headers_out[key] = f"{headers_out[key]}, {value}" if key in headers_out else value

        return WireResponse(
            status=response.status_code,
            headers=headers_out,
            body=decode_body(content, headers_out, want_bytes),
            is_binary=want_bytes,
            error=f"HTTP {response.status_code}" if response.status_code >= 400 else None,
            status_text=response.reason_phrase,
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
