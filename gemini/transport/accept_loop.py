"""Main connection acceptance loop."""

import logging
import os
import socket
import ssl
import threading
from typing import Optional

from gemini.bootstrap.config import (
    DEFAULT_PORT,
    DEFAULT_SERVER_ADDRESS,
    DEFAULT_SHUTDOWN_GRACE_SECONDS,
    DEFAULT_SOCKET_TIMEOUT,
    KEYLOG_ENV_VAR,
    ServerConfig,
)
from gemini.bootstrap.socket_factory import build_server_context, create_server_socket
from gemini.client.resolver import split_host_port
from gemini.domain.correlation_id import CorrelationLoggerAdapter
from gemini.domain.gemini_types import Handler
from gemini.lifecycle.state import ServerLifecycle
from gemini.transport.context import WorkerContext
from gemini.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("gemini.transport.accept"), {}
)


def _handle_accepted_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    handler_context: WorkerContext,
) -> None:
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": f"{client_address[0]}:{client_address[1]}",
            },
        )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, handler_context),
        daemon=False,
    )
    thread.start()


def run_server(
    server_socket: socket.socket,
    tls_context: ssl.SSLContext,
    handler: Handler,
    config: ServerConfig,
    lifecycle: ServerLifecycle,
) -> None:
    """Accept connections until the lifecycle stops, then drain the workers."""
    handler_context = WorkerContext(
        handler=handler,
        tls_context=tls_context,
        lifecycle=lifecycle,
        config=config,
    )

    try:
        while True:
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                if lifecycle.is_draining():
                    break
                continue
            except OSError as error:
                if lifecycle.is_draining():
                    break
                ACCEPT_LOGGER.error(
                    "Socket accept failed",
                    extra={"event": "accept_error", "error_type": type(error).__name__},
                )
                continue

            _handle_accepted_client(client_socket, client_address, handler_context)
    finally:
        server_socket.close()
        ACCEPT_LOGGER.info(
            "Waiting for active connections to complete",
            extra={
                "event": "shutdown_waiting",
                "grace_seconds": config.shutdown_grace_seconds,
            },
        )
        lifecycle.wait_for_connections(config.shutdown_grace_seconds)
        ACCEPT_LOGGER.info(
            "Server shutdown complete", extra={"event": "server_stopped"}
        )


def listen_and_serve(
    addr: str,
    cert_file: str,
    key_file: str,
    handler: Handler,
    config: Optional[ServerConfig] = None,
    lifecycle: Optional[ServerLifecycle] = None,
) -> None:
    """Serve ``handler`` over TLS on ``addr`` (``host:port``).

    An empty ``addr`` means ``127.0.0.1:1965``. Each connection is handled on
    its own thread, and TLS secrets go to ``SSLKEYLOGFILE`` when it is set.
    Blocks until ``lifecycle.begin_draining()`` is called; without a
    lifecycle the server runs until the process exits.
    """
    if not addr:
        addr = f"{DEFAULT_SERVER_ADDRESS}:{DEFAULT_PORT}"
    host, port = split_host_port(addr, DEFAULT_PORT)
    if config is None:
        config = ServerConfig(DEFAULT_SOCKET_TIMEOUT, DEFAULT_SHUTDOWN_GRACE_SECONDS)
    if lifecycle is None:
        lifecycle = ServerLifecycle()

    tls_context = build_server_context(
        cert_file, key_file, os.getenv(KEYLOG_ENV_VAR) or None
    )
    server_socket = create_server_socket(host, port)

    ACCEPT_LOGGER.info(
        "Server listening for connections",
        extra={"event": "server_listening", "host": host, "port": port},
    )
    run_server(server_socket, tls_context, handler, config, lifecycle)
