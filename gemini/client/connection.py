"""TLS connection establishment and peer certificate verification.

Chain validation is switched off: self-signed certificates are the norm for
Gemini servers, so trust rests entirely on the hostname and validity checks
applied to the leaf certificate.

When ``SSLKEYLOGFILE`` is set, TLS session secrets are appended to that file
in the NSS key log format. This exists only for debugging with packet
analysers; anyone who can read the file can decrypt the recorded traffic.
"""

import enum
import logging
import socket
import ssl
import tempfile
import time
from pathlib import Path
from typing import Iterable, Optional

from gemini.bootstrap.config import ClientCertificate, ClientConfig
from gemini.client.resolver import is_ip_literal
from gemini.client.timeouts import TimeoutPolicy, apply_deadline, remaining_seconds
from gemini.domain.correlation_id import CorrelationLoggerAdapter, mark_phase
from gemini.domain.errors import (
    CertificateVerificationError,
    ClientCertificateError,
    HostResolutionError,
    TLSHandshakeError,
)
from gemini.security.certificate import Certificate
from gemini.security.keylog import enable_keylog
from gemini.security.verify_hostname import verify_certificate

CONNECTION_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("gemini.client.connection"), {}
)


class ConnectionPhase(enum.Enum):
    """Lifecycle of a single client connection."""

    CONNECTING = "connecting"
    VERIFYING = "verifying"
    REQUEST_SENT = "request_sent"
    HEADER_READ = "header_read"
    STREAMING_BODY = "streaming_body"
    CLOSED = "closed"


class Connection:
    """A verified TLS socket plus the deadline currently applied to it."""

    def __init__(
        self,
        tls_socket: ssl.SSLSocket,
        certificate: Certificate,
        handshake_done_ns: int,
    ) -> None:
        self._socket = tls_socket
        self.certificate = certificate
        self.handshake_done_ns = handshake_done_ns
        self._deadline_ns: Optional[int] = None
        self.phase = ConnectionPhase.VERIFYING

    @property
    def phase(self) -> ConnectionPhase:
        return self._phase

    @phase.setter
    def phase(self, phase: ConnectionPhase) -> None:
        self._phase = phase
        mark_phase(phase.value)

    @property
    def closed(self) -> bool:
        """True once the socket has been released."""
        return self.phase is ConnectionPhase.CLOSED

    def set_deadline(self, deadline_ns: Optional[int]) -> None:
        """Bound every following read and write by ``deadline_ns`` (None clears)."""
        self._deadline_ns = deadline_ns

    def sendall(self, data: bytes) -> None:
        """Write all of ``data`` before the current deadline."""
        apply_deadline(self._socket, self._deadline_ns)
        self._socket.sendall(data)

    def recv(self, size: int) -> bytes:
        """Read up to ``size`` bytes before the current deadline."""
        apply_deadline(self._socket, self._deadline_ns)
        return self._socket.recv(size)

    def recv_into(self, buffer) -> int:
        """Read into ``buffer`` before the current deadline."""
        apply_deadline(self._socket, self._deadline_ns)
        return self._socket.recv_into(buffer)

    def close(self) -> None:
        """Close the socket; safe to call more than once."""
        if self.phase is ConnectionPhase.CLOSED:
            return
        self.phase = ConnectionPhase.CLOSED
        try:
            self._socket.close()
        finally:
            if CONNECTION_LOGGER.logger.isEnabledFor(logging.DEBUG):
                CONNECTION_LOGGER.debug(
                    "Connection closed", extra={"event": "connection_closed"}
                )


def _load_client_certificate(
    context: ssl.SSLContext, client_cert: ClientCertificate
) -> None:
    # ssl only loads key material from files.
    with tempfile.TemporaryDirectory(prefix="gemini-cert-") as workdir:
        cert_path = Path(workdir) / "cert.pem"
        key_path = Path(workdir) / "key.pem"
        cert_path.write_bytes(client_cert.cert_pem)
        key_path.touch(mode=0o600)
        key_path.write_bytes(client_cert.key_pem)
        try:
            context.load_cert_chain(str(cert_path), str(key_path))
        except ssl.SSLError as error:
            raise ClientCertificateError(
                f"failed to parse cert/key PEM: {error}"
            ) from error


def build_tls_context(
    client_cert: Optional[ClientCertificate] = None,
    keylog_path: Optional[str] = None,
) -> ssl.SSLContext:
    """Create the client TLS context: TLS 1.2+, no chain or hostname validation."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE

    if client_cert is not None:
        _load_client_certificate(context, client_cert)

    enable_keylog(context, keylog_path)
    return context


def _dial(address: tuple[str, int], deadline_ns: Optional[int]) -> socket.socket:
    try:
        timeout = remaining_seconds(deadline_ns)
        return socket.create_connection(address, timeout=timeout)
    except socket.gaierror as error:
        raise HostResolutionError(
            f"failed to resolve {address[0]}: {error}"
        ) from error
    except OSError as error:
        raise TLSHandshakeError(
            f"failed to connect to {address[0]}:{address[1]}: {error}"
        ) from error


def _handshake(
    raw_socket: socket.socket,
    context: ssl.SSLContext,
    server_hostname: Optional[str],
    deadline_ns: Optional[int],
) -> ssl.SSLSocket:
    try:
        apply_deadline(raw_socket, deadline_ns)
        return context.wrap_socket(raw_socket, server_hostname=server_hostname)
    except (ssl.SSLError, OSError) as error:
        raw_socket.close()
        raise TLSHandshakeError(f"TLS handshake failed: {error}") from error


def _peer_certificate(tls_socket: ssl.SSLSocket) -> Certificate:
    der = tls_socket.getpeercert(binary_form=True)
    if not der:
        raise TLSHandshakeError("server did not present a certificate")
    try:
        return Certificate.from_der(der)
    except ValueError as error:
        raise TLSHandshakeError(
            f"failed to parse server certificate: {error}"
        ) from error


def open_connection(
    address: tuple[str, int],
    verification_hosts: Iterable[str],
    config: ClientConfig,
    policy: TimeoutPolicy,
    client_cert: Optional[ClientCertificate] = None,
) -> Connection:
    """Dial ``address``, complete the handshake and verify the leaf certificate.

    The socket is closed before any error propagates. On success the returned
    connection has the read deadline applied when one is configured.
    """
    host, port = address
    context = build_tls_context(client_cert, config.keylog_path())
    connect_deadline = policy.connect_deadline()

    if CONNECTION_LOGGER.logger.isEnabledFor(logging.DEBUG):
        CONNECTION_LOGGER.debug(
            "Connecting",
            extra={
                "event": "connect_started",
                "host": host,
                "port": port,
                "client_cert": client_cert is not None,
            },
        )

    mark_phase(ConnectionPhase.CONNECTING.value)
    raw_socket = _dial(address, connect_deadline)
    server_hostname = None if is_ip_literal(host) else host
    tls_socket = _handshake(raw_socket, context, server_hostname, connect_deadline)
    handshake_done_ns = time.monotonic_ns()

    try:
        certificate = _peer_certificate(tls_socket)
    except TLSHandshakeError:
        tls_socket.close()
        raise

    connection = Connection(tls_socket, certificate, handshake_done_ns)
    connection.set_deadline(policy.read_deadline(handshake_done_ns))

    try:
        verify_certificate(certificate, verification_hosts, config)
    except CertificateVerificationError as error:
        CONNECTION_LOGGER.warning(
            "Server certificate rejected",
            extra={
                "event": "certificate_rejected",
                "host": host,
                "field": error.field,
                "error_type": type(error).__name__,
            },
        )
        connection.close()
        raise

    CONNECTION_LOGGER.debug(
        "TLS connection established",
        extra={
            "event": "connection_established",
            "host": host,
            "port": port,
            "tls_version": tls_socket.version(),
        },
    )
    return connection
