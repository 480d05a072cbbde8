"""Unit tests for the per-connection server worker."""

import logging
import socket
import ssl
from unittest.mock import MagicMock

import pytest

from gemini.bootstrap.config import ServerConfig
from gemini.domain.errors import StatusError
from gemini.domain.gemini_types import GeminiRequest, GeminiResponse
from gemini.lifecycle.state import ServerLifecycle
from gemini.transport.context import WorkerContext
from gemini.transport.worker import handle_client
from tests.utils.gemini import FakeConnection

CLIENT_ADDRESS = ("127.0.0.1", 50000)


def _context(tls_socket, handler, lifecycle=None) -> WorkerContext:
    tls_context = MagicMock(spec=ssl.SSLContext)
    tls_context.wrap_socket.return_value = tls_socket
    return WorkerContext(
        handler=handler,
        tls_context=tls_context,
        lifecycle=lifecycle,
        config=ServerConfig(socket_timeout=5, shutdown_grace_seconds=1),
    )


def _serve(request: bytes, handler, lifecycle=None) -> FakeConnection:
    tls_socket = FakeConnection(request)
    raw_socket = MagicMock(spec=socket.socket)
    handle_client(raw_socket, CLIENT_ADDRESS, _context(tls_socket, handler, lifecycle))
    raw_socket.settimeout.assert_called_once_with(5)
    return tls_socket


def test_handler_response_written_and_socket_closed():
    seen: list[GeminiRequest] = []

    def handler(request: GeminiRequest) -> GeminiResponse:
        seen.append(request)
        return GeminiResponse(20, "text/gemini", b"# Hello World\n")

    conn = _serve(b"gemini://localhost/hello?q=1\r\n", handler)

    assert bytes(conn.sent) == b"20 text/gemini\r\n# Hello World\n"
    assert conn.closed
    assert seen[0].raw_url == "gemini://localhost/hello?q=1"
    assert seen[0].url.path == "/hello"
    assert seen[0].url.query == "q=1"


def test_scheme_defaults_to_gemini():
    seen: list[GeminiRequest] = []

    def handler(request: GeminiRequest) -> GeminiResponse:
        seen.append(request)
        return GeminiResponse(20, "text/plain")

    _serve(b"//localhost/\r\n", handler)

    assert seen[0].url.scheme == "gemini"


@pytest.mark.parametrize(
    "request_line",
    [
        b"gemini://user@localhost/\r\n",
        b"gemini://localhost/\n",
        b"gemini://localhost/" + b"a" * 1100 + b"\r\n",
        b"gemini://localhost:port/\r\n",
    ],
)
def test_bad_requests_get_59(request_line):
    handler = MagicMock()

    conn = _serve(request_line, handler)

    assert bytes(conn.sent).startswith(b"59 Bad URL: ")
    assert bytes(conn.sent).endswith(b"\r\n")
    handler.assert_not_called()


def test_status_error_from_handler():
    def handler(request: GeminiRequest) -> GeminiResponse:
        raise StatusError(51, "no such page")

    conn = _serve(b"gemini://localhost/x\r\n", handler)

    assert bytes(conn.sent) == b"51 Status 51: no such page\r\n"


def test_unexpected_handler_error_is_40(caplog):
    def handler(request: GeminiRequest) -> GeminiResponse:
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR, logger="gemini"):
        conn = _serve(b"gemini://localhost/x\r\n", handler)

    assert bytes(conn.sent) == b"40 Internal server error\r\n"
    record = next(r for r in caplog.records if getattr(r, "event", None) == "handler_error")
    assert record.correlation_scope == "connection"
    assert record.phase == "handling"


def test_disconnect_before_request_sends_nothing():
    handler = MagicMock()

    conn = _serve(b"", handler)

    assert bytes(conn.sent) == b""
    assert conn.closed
    handler.assert_not_called()


def test_draining_server_answers_41():
    lifecycle = ServerLifecycle()
    lifecycle.begin_draining()
    handler = MagicMock()

    conn = _serve(b"gemini://localhost/\r\n", handler, lifecycle)

    assert bytes(conn.sent) == b"41 Server is shutting down\r\n"
    handler.assert_not_called()
    assert lifecycle.active_connection_count() == 0
    assert lifecycle.refused_count == 1


def test_handshake_failure_closes_raw_socket(caplog):
    raw_socket = MagicMock(spec=socket.socket)
    tls_context = MagicMock(spec=ssl.SSLContext)
    tls_context.wrap_socket.side_effect = ssl.SSLError("bad handshake")
    context = WorkerContext(handler=MagicMock(), tls_context=tls_context)

    with caplog.at_level(logging.WARNING, logger="gemini"):
        handle_client(raw_socket, CLIENT_ADDRESS, context)

    raw_socket.close.assert_called_once()
    assert any(getattr(r, "event", None) == "handshake_failed" for r in caplog.records)


def test_streamed_body_iterator_closed():
    closed = []

    def chunks():
        try:
            yield b"one"
            yield b"two"
        finally:
            closed.append(True)

    def handler(request: GeminiRequest) -> GeminiResponse:
        return GeminiResponse(20, "text/plain", body_iter=chunks())

    conn = _serve(b"gemini://localhost/\r\n", handler)

    assert bytes(conn.sent) == b"20 text/plain\r\nonetwo"
    assert closed == [True]
