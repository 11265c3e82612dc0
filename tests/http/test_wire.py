"""
Tests for parsing combined curl output
"""
import base64

import pytest

from tachiyomi_runtime.http.wire import WireResponse, parse_header_block, parse_wire_response


def curl_output(status_line: str, headers: list[str], body: bytes, status: int) -> bytes:
    head = "\r\n".join([status_line, *headers]).encode("iso-8859-1")
    return head + b"\r\n\r\n" + body + b"\n" + str(status).encode()


class TestParseWireResponse:
    @pytest.mark.parametrize(
        "status,headers,body",
        [
            (200, {"content-type": "text/html"}, "<p>hi</p>"),
            (404, {"x-request-id": "abc", "server": "nginx"}, "not found"),
            (201, {}, ""),
            (200, {"content-type": "application/json"}, '{"lines": "one\\ntwo"}\n'),
        ],
    )
    def test_recovers_status_headers_and_body(self, status, headers, body):
        raw = curl_output(
            f"HTTP/1.1 {status} Whatever",
            [f"{k.title()}: {v}" for k, v in headers.items()],
            body.encode(),
            status,
        )

        response = parse_wire_response(raw)

        assert response.status == status
        assert response.headers == headers
        assert response.body == body

    def test_error_set_for_http_error_status(self):
        response = parse_wire_response(curl_output("HTTP/1.1 503 Service Unavailable", [], b"busy", 503))

        assert response.error == "HTTP 503"
        assert response.status_text == "Service Unavailable"

    def test_redirect_blocks_are_skipped(self):
        raw = (
            b"HTTP/1.1 301 Moved Permanently\r\nLocation: /new\r\n\r\n"
            b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n\r\n"
            b"final\n200"
        )

        response = parse_wire_response(raw)

        assert response.status == 200
        assert response.headers == {"content-type": "text/plain"}
        assert response.body == "final"

    def test_missing_status_trailer_defaults_to_200(self):
        raw = b"HTTP/1.1 200 OK\r\n\r\nbody without trailer"

        response = parse_wire_response(raw)

        assert response.status == 200
        assert response.body == "body without trailer"

    def test_unparseable_trailer_still_ends_the_body(self):
        raw = b"HTTP/1.1 200 OK\r\n\r\nline one\nline two\nnot-a-status"

        response = parse_wire_response(raw)

        assert response.status == 200
        assert response.body == "line one\nline two"

    def test_binary_body_is_base64(self):
        payload = bytes(range(256))
        raw = curl_output("HTTP/2 200", ["Content-Type: image/png"], payload, 200)

        response = parse_wire_response(raw, want_bytes=True)

        assert response.is_binary is True
        assert base64.b64decode(response.body) == payload
        assert response.status_text == "OK"

    def test_charset_from_content_type(self):
        raw = curl_output("HTTP/1.1 200 OK", ["Content-Type: text/html; charset=ISO-8859-1"], "café".encode("latin-1"), 200)

        assert parse_wire_response(raw).body == "café"


def test_duplicate_headers_are_joined():
    headers = parse_header_block(b"HTTP/1.1 200 OK\r\nSet-Cookie: a=1\r\nset-cookie: b=2\r\nBad line\r\n")
    assert headers == {"set-cookie": "a=1, b=2"}


def test_hook_result_shape():
    result = WireResponse(status=200, headers={"a": "b"}, body="x").to_hook_result()

    assert result == {
        "status": 200,
        "statusText": "OK",
        "headersJson": '{"a": "b"}',
        "body": "x",
        "error": None,
    }


def test_failure_has_status_zero():
    response = WireResponse.failure("could not connect")
    assert response.status == 0
    assert response.error == "could not connect"
