"""Listening socket creation and server TLS configuration."""

import logging
import socket
import ssl
from typing import Optional

from gemini.domain.correlation_id import CorrelationLoggerAdapter
from gemini.domain.errors import ServerStartError
from gemini.security.keylog import enable_keylog

SOCKET_LOGGER = CorrelationLoggerAdapter(logging.getLogger("gemini.socket"), {})

ACCEPT_POLL_SECONDS = 0.5


def build_server_context(
    cert_file: str, key_file: str, keylog_path: Optional[str] = None
) -> ssl.SSLContext:
    """Load the server certificate into a TLS 1.2+ context.

    Client certificates are not requested.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        context.load_cert_chain(cert_file, key_file)
    except (ssl.SSLError, OSError) as error:
        SOCKET_LOGGER.critical(
            "Failed to load TLS certificates",
            extra={"event": "certificate_load_failed", "error_type": type(error).__name__},
        )
        raise ServerStartError(f"failed to load certificates: {error}") from error

    enable_keylog(context, keylog_path)
    return context


def create_server_socket(host: str, port: int) -> socket.socket:
    """Bind a plain TCP listener; the TLS handshake runs in each worker."""
    try:
        server_socket = socket.create_server((host, port), reuse_port=True)
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listening socket",
            extra={
                "event": "bind_failed",
                "host": host,
                "port": port,
                "error_type": type(error).__name__,
            },
        )
        raise ServerStartError(f"failed to listen: {error}") from error
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket
