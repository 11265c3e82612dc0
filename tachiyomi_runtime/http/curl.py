"""
Synchronous HTTP over a curl child process

Hosted extensions expect an inline response. Running curl out of process
keeps the network I/O off the interpreter; the isolated context still blocks
on it, the caller's event loop never does.
"""
from __future__ import annotations

import logging
import subprocess
from typing import Mapping
from urllib.parse import quote

from ..config import TransportConfig
from ..errors import TransportFailure
from .wire import WireResponse, parse_wire_response

logger = logging.getLogger(__name__)

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def apply_proxy(url: str, proxy_url: str | None) -> str:
    """Prefix the target URL with the proxy base (target is percent-encoded)"""
    if not proxy_url:
        return url
    return f"{proxy_url}{quote(url, safe='')}"


class CurlTransport:
    """
    HTTP bridge that shells out to curl.

    Example:
        ```python
        transport = CurlTransport()
        response = transport.execute("https://example.org", "GET", {}, None, False)
        print(response.status, response.headers.get("content-type"))
        ```
    """

    def __init__(self, config: TransportConfig | None = None):
        self.config = config or TransportConfig()

    def build_args(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str],
        body: str | None,
    ) -> list[str]:
        method = (method or "GET").upper()
        args = [
            self.config.curl_path,
            "-s",  # silent
            "-S",  # show errors
            "-L",  # follow redirects
            "-X", method,
            "-D", "-",  # dump headers to stdout
            "-w", "\n%{http_code}",
        ]

        for key, value in headers.items():
            args.extend(["-H", f"{key}: {value}"])

        if body is not None and (body or method in _BODY_METHODS):
            args.extend(["--data-binary", body])

        if self.config.max_time_s:
            args.extend(["--max-time", str(self.config.max_time_s)])

        args.append(apply_proxy(url, self.config.proxy_url))
        return args

    def execute(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str],
        body: str | None,
        want_bytes: bool,
    ) -> WireResponse:
        """
        Perform one request and wait for it to finish.

        Returns:
            WireResponse; non-zero curl exits and HTTP error statuses are
            reported through ``error``

        Raises:
            TransportFailure: curl could not run or produced no usable output
        """
        args = self.build_args(url, method, headers, body)

        try:
            result = subprocess.run(args, capture_output=True, check=False)
        except OSError as e:
            raise TransportFailure(
                f"Could not run {self.config.curl_path}: {e}",
                details={"url": url},
            ) from e

        stdout = result.stdout or b""
        stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()

        if len(stdout) > self.config.max_output_bytes:
            raise TransportFailure(
                f"Response for {url} exceeds {self.config.max_output_bytes} bytes",
                details={"url": url, "size": len(stdout)},
            )

        if result.returncode != 0:
            error = stderr or f"curl failed with exit code {result.returncode}"
            logger.debug(f"curl exited with {result.returncode} for {method} {url}: {error}")
            if not stdout:
                return WireResponse.failure(error)
            response = parse_wire_response(stdout, want_bytes)
            response.error = error
            return response

        if not stdout:
            raise TransportFailure(f"curl produced no output for {url}", details={"url": url})

        return parse_wire_response(stdout, want_bytes)
