"""
Wire response model and raw curl output parser

The transport runs curl with headers dumped to stdout (``-D -``) and the
numeric status appended after the body (``-w "\\n%{http_code}"``), so one
combined byte stream carries everything::

    HTTP/1.1 200 OK\\r\\n
    Content-Type: text/html\\r\\n
    \\r\\n
    <body bytes>\\n
    200
"""
from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

HEADER_TERMINATOR = b"\r\n\r\n"

DEFAULT_STATUS = 200

_CHARSET_RE = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)
_STATUS_LINE_RE = re.compile(r"^HTTP/[\d.]+ (\d{3})(?: (.*))?$")


@dataclass
class WireResponse:
    """
    Structured HTTP response handed back to a hosted extension.

    ``body`` is text, or base64 of the raw bytes when ``is_binary`` is set.
    ``error`` describes transport-level problems and HTTP error statuses;
    it never replaces the rest of the response.
    """
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    is_binary: bool = False
    error: str | None = None
    status_text: str = ""

    def __post_init__(self):
        if not self.status_text:
            self.status_text = status_text_for(self.status)

    @classmethod
    def failure(cls, message: str) -> "WireResponse":
        return cls(status=0, error=message)

    def to_hook_result(self) -> dict[str, Any]:
        """Shape expected by compiled extensions from the HTTP hook"""
        return {
            "status": self.status,
            "statusText": self.status_text,
            "headersJson": json.dumps(self.headers),
            "body": self.body,
            "error": self.error,
        }


def status_text_for(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


def parse_header_block(block: bytes) -> dict[str, str]:
    """Parse ``name: value`` lines; the first line is the status line and is skipped."""
    headers: dict[str, str] = {}
    lines = block.decode("iso-8859-1").split("\r\n")
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            continue
        key = name.strip().lower()
        value = value.strip()
        headers[key] = f"{headers[key]}, {value}" if key in headers else value
    return headers


def _split_headers(raw: bytes) -> tuple[bytes, bytes]:
    end = raw.find(HEADER_TERMINATOR)
    if end < 0:
        return b"", raw

    block, rest = raw[:end], raw[end + len(HEADER_TERMINATOR):]

    # With -L every redirect (and any 100 Continue) dumps its own header
    # block; the last one describes the body that follows.
    while rest.startswith(b"HTTP/"):
        nxt = rest.find(HEADER_TERMINATOR)
        if nxt < 0:
            break
        block, rest = rest[:nxt], rest[nxt + len(HEADER_TERMINATOR):]

    return block, rest


def _split_status(rest: bytes) -> tuple[bytes, int]:
    # Body ends at the last newline; an unparseable trailer means status 200
    newline = rest.rfind(b"\n")
    if newline < 0:
        try:
            return b"", int(rest.strip())
        except ValueError:
            return rest, DEFAULT_STATUS

    body, trailer = rest[:newline], rest[newline + 1:]
    try:
        status = int(trailer.strip())
    except ValueError:
        status = DEFAULT_STATUS
    return body, status


def _status_line_reason(block: bytes, status: int) -> str:
    """Reason phrase from the status line when it matches the trailing status"""
    first_line = block.split(b"\r\n", 1)[0].decode("iso-8859-1")
    match = _STATUS_LINE_RE.match(first_line)
    if match and int(match.group(1)) == status and match.group(2):
        return match.group(2).strip()
    return ""


def _charset(headers: dict[str, str]) -> str:
    match = _CHARSET_RE.search(headers.get("content-type", ""))
    return match.group(1) if match else "utf-8"


def decode_body(body: bytes, headers: dict[str, str], want_bytes: bool) -> str:
    if want_bytes:
        return base64.b64encode(body).decode("ascii")
    try:
        return body.decode(_charset(headers), errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


def parse_wire_response(raw: bytes, want_bytes: bool = False) -> WireResponse:
    """
    Parse combined curl output into a WireResponse.

    Args:
        raw: Header block(s), blank line, body, newline, status code
        want_bytes: Return the body base64-encoded instead of as text

    Returns:
        WireResponse; ``error`` is set for status >= 400
    """
    block, rest = _split_headers(raw)
    headers = parse_header_block(block)
    body, status = _split_status(rest)

    return WireResponse(
        status=status,
        headers=headers,
        body=decode_body(body, headers, want_bytes),
        is_binary=want_bytes,
        error=f"HTTP {status}" if status >= 400 else None,
        status_text=_status_line_reason(block, status),
    )
