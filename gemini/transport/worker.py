"""Worker thread logic: one TLS connection, one request, one response."""

import logging
import socket
import ssl
import threading
import time
from typing import Optional

from gemini.domain.correlation_id import (
    SCOPE_CONNECTION,
    CorrelationLoggerAdapter,
    begin_correlation,
    end_correlation,
    mark_phase,
)
from gemini.domain.errors import HeaderReadError, MalformedHeader, StatusError
from gemini.domain.gemini_types import GeminiRequest, GeminiResponse
from gemini.domain.response_builders import (
    bad_request_response,
    error_response,
    internal_error_response,
)
from gemini.pipeline.codec import parse_request_url, read_request_line, write_response
from gemini.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("gemini.transport.worker"), {}
)


def _handshake(
    client_socket: socket.socket, context: WorkerContext, client_addr_str: str
) -> Optional[ssl.SSLSocket]:
    if context.config is not None:
        client_socket.settimeout(context.config.socket_timeout)
    try:
        return context.tls_context.wrap_socket(client_socket, server_side=True)
    except (ssl.SSLError, OSError) as error:
        WORKER_LOGGER.warning(
            "TLS handshake failed",
            extra={
                "event": "handshake_failed",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
        return None


def _read_request(
    tls_socket: ssl.SSLSocket, client_addr_str: str
) -> tuple[Optional[GeminiRequest], Optional[GeminiResponse]]:
    """Return the parsed request, or the response to send instead of one."""
    try:
        raw_url = read_request_line(tls_socket)
        if raw_url is None:
            if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                WORKER_LOGGER.debug(
                    "Client disconnected before sending a request",
                    extra={"event": "client_disconnected", "client": client_addr_str},
                )
            return None, None
        url = parse_request_url(raw_url)
    except HeaderReadError:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Client disconnected mid request",
                extra={"event": "client_disconnected", "client": client_addr_str},
            )
        return None, None
    except (MalformedHeader, ValueError) as error:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={
                "event": "malformed_request",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
        return None, bad_request_response(str(error))
    return GeminiRequest(url, raw_url), None


def _dispatch(context: WorkerContext, request: GeminiRequest) -> GeminiResponse:
    try:
        return context.handler(request)
    except StatusError as error:
        return error_response(error)
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Handler raised an unexpected error",
            extra={"event": "handler_error", "error_type": type(error).__name__},
            exc_info=True,
        )
        return internal_error_response()


def _send(
    tls_socket: ssl.SSLSocket,
    response: GeminiResponse,
    client_addr_str: str,
    started_ns: int,
) -> None:
    try:
        sent = write_response(tls_socket, response)
    finally:
        close_body = getattr(response.body_iter, "close", None)
        if close_body is not None:
            close_body()
    WORKER_LOGGER.info(
        "Response sent",
        extra={
            "event": "response_sent",
            "client": client_addr_str,
            "status_code": response.status,
            "bytes_out": sent,
            "duration_ms": (time.monotonic_ns() - started_ns) // 1_000_000,
        },
    )


def _close(client_socket: socket.socket, client_addr_str: str) -> None:
    try:
        client_socket.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    client_socket.close()
    if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Socket closed",
            extra={"event": "socket_closed", "client": client_addr_str},
        )


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Serve exactly one request on ``client_socket`` and close it."""
    started_ns = time.monotonic_ns()
    current_thread = threading.current_thread()
    lifecycle = context.lifecycle
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    if lifecycle is not None:
        lifecycle.track_connection(current_thread, client_addr_str)
    begin_correlation(SCOPE_CONNECTION)
    connection: socket.socket = client_socket

    try:
        mark_phase("handshake")
        tls_socket = _handshake(client_socket, context, client_addr_str)
        if tls_socket is None:
            return
        connection = tls_socket

        if lifecycle is not None and lifecycle.is_draining():
            mark_phase("draining")
            _send(
                tls_socket,
                lifecycle.refuse_while_draining(),
                client_addr_str,
                started_ns,
            )
            return

        mark_phase("reading_request")
        request, rejection = _read_request(tls_socket, client_addr_str)
        if rejection is not None:
            _send(tls_socket, rejection, client_addr_str, started_ns)
            return
        if request is None:
            return

        WORKER_LOGGER.debug(
            "Request line parsed",
            extra={
                "event": "request_line_parsed",
                "client": client_addr_str,
                "path": request.url.path,
            },
        )
        mark_phase("handling")
        response = _dispatch(context, request)
        mark_phase("responding")
        _send(tls_socket, response, client_addr_str, started_ns)
    except (ConnectionError, TimeoutError, OSError) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
    finally:
        _close(connection, client_addr_str)
        if lifecycle is not None:
            lifecycle.release_connection(current_thread)
        end_correlation()
