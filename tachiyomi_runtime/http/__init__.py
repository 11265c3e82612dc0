"""HTTP transport for hosted extensions"""

from .bridge import (
    HTTP_HOOK_NAME,
    HttpBridge,
    create_http_hook,
    create_transport,
    install_http_bridge,
)
from .curl import CurlTransport, apply_proxy
from .wire import WireResponse, parse_header_block, parse_wire_response

__all__ = [
    "HTTP_HOOK_NAME",
    "HttpBridge",
    "create_http_hook",
    "create_transport",
    "install_http_bridge",
    "CurlTransport",
    "apply_proxy",
    "WireResponse",
    "parse_header_block",
    "parse_wire_response",
]
