"""Gemini client: one request, one response, then close."""

import logging
import time
from typing import Optional

from gemini.bootstrap.config import ClientCertificate, ClientConfig
from gemini.client.connection import Connection, ConnectionPhase, open_connection
from gemini.client.resolver import (
    RequestURL,
    resolve_dial_target,
    resolve_url,
    to_unicode_host,
)
from gemini.client.timeouts import NS_PER_SECOND, TimeoutPolicy
from gemini.domain.correlation_id import (
    SCOPE_FETCH,
    CorrelationLoggerAdapter,
    begin_correlation,
)
from gemini.pipeline.body import ResponseBody
from gemini.pipeline.codec import check_status, read_header, send_request
from gemini.security.certificate import Certificate

CLIENT_LOGGER = CorrelationLoggerAdapter(logging.getLogger("gemini.client"), {})


class Response:
    """Status, meta and live body of a Gemini response.

    The response owns the connection. Close it (or use it as a context
    manager) to release the socket, whether or not the body was read.
    """

    def __init__(
        self,
        status: int,
        meta: str,
        connection: Connection,
        url: str,
    ) -> None:
        self.status = status
        self.meta = meta
        self.url = url
        self._connection = connection
        self.body = ResponseBody(connection)

    @property
    def cert(self) -> Certificate:
        """The server's leaf certificate as seen during verification."""
        return self._connection.certificate

    def set_read_timeout(self, seconds: Optional[float]) -> None:
        """Replace the read deadline, counted from now; None or <= 0 clears it."""
        if seconds is None or seconds <= 0:
            self._connection.set_deadline(None)
            return
        self._connection.set_deadline(time.monotonic_ns() + int(seconds * NS_PER_SECOND))

    def read(self) -> bytes:
        """Read the remaining body until the server closes the connection."""
        return self.body.read()

    def close(self) -> None:
        """Release the underlying connection."""
        self.body.close()

    def __enter__(self) -> "Response":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Response [{self.status}] {self.meta!r}>"


def _verification_hosts(ascii_host: str) -> tuple[str, ...]:
    unicode_host = to_unicode_host(ascii_host)
    if unicode_host != ascii_host:
        return ascii_host, unicode_host
    return (ascii_host,)


class Client:
    """Fetches Gemini resources with an immutable :class:`ClientConfig`.

    A client holds no mutable state, so one instance can be shared by any
    number of threads. Nothing is retried: each call makes exactly one
    connection and any failure is raised to the caller.
    """

    def __init__(self, config: Optional[ClientConfig] = None) -> None:
        self.config = config if config is not None else ClientConfig()

    def fetch(self, raw_url: str) -> Response:
        """Fetch ``raw_url``, assuming port 1965 when none is given."""
        return self.fetch_with_host_and_cert(None, raw_url)

    def fetch_with_host(self, host: str, raw_url: str) -> Response:
        """Request ``raw_url`` from the server at ``host`` (e.g. a proxy).

        The certificate must be valid for ``host``, the server actually dialled,
        not for the URL's host.
        """
        return self.fetch_with_host_and_cert(host, raw_url)

    def fetch_with_cert(self, raw_url: str, cert_pem: bytes, key_pem: bytes) -> Response:
        """Fetch ``raw_url`` presenting a PEM client certificate and key."""
        return self.fetch_with_host_and_cert(None, raw_url, cert_pem, key_pem)

    def fetch_with_host_and_cert(
        self,
        host: Optional[str],
        raw_url: str,
        cert_pem: bytes = b"",
        key_pem: bytes = b"",
    ) -> Response:
        """Combine :meth:`fetch_with_host` and :meth:`fetch_with_cert`.

        Empty ``cert_pem`` and ``key_pem`` mean no client certificate.
        """
        begin_correlation(SCOPE_FETCH)
        policy = TimeoutPolicy.start(self.config)
        request = resolve_url(raw_url)

        if host is None:
            address = request.address
            verification_hosts = request.verification_hosts
        else:
            dial_host, dial_port, _ = resolve_dial_target(host)
            address = (dial_host, dial_port)
            verification_hosts = _verification_hosts(dial_host)

        client_cert = None
        if cert_pem or key_pem:
            client_cert = ClientCertificate(cert_pem, key_pem)

        connection = open_connection(
            address, verification_hosts, self.config, policy, client_cert
        )
        try:
            response = self._exchange(connection, request, policy)
        except Exception as error:
            CLIENT_LOGGER.warning(
                "Fetch failed",
                extra={
                    "event": "fetch_failed",
                    "host": address[0],
                    "error_type": type(error).__name__,
                },
            )
            connection.close()
            raise

        CLIENT_LOGGER.info(
            "Response header received",
            extra={
                "event": "fetch_complete",
                "host": address[0],
                "port": address[1],
                "status_code": response.status,
            },
        )
        return response

    def _exchange(
        self, connection: Connection, request: RequestURL, policy: TimeoutPolicy
    ) -> Response:
        connection.set_deadline(policy.header_deadline(connection.handshake_done_ns))

        send_request(connection, request.url)
        connection.phase = ConnectionPhase.REQUEST_SENT

        header = read_header(connection)
        connection.phase = ConnectionPhase.HEADER_READ
        check_status(header, self.config.allow_invalid_statuses)

        connection.set_deadline(policy.body_deadline(connection.handshake_done_ns))
        connection.phase = ConnectionPhase.STREAMING_BODY
        return Response(header.status, header.meta, connection, request.url)


def fetch(raw_url: str, config: Optional[ClientConfig] = None) -> Response:
    """Fetch ``raw_url`` with ``config`` or the default configuration."""
    return Client(config).fetch(raw_url)


def fetch_with_host(
    host: str, raw_url: str, config: Optional[ClientConfig] = None
) -> Response:
    """Module-level :meth:`Client.fetch_with_host`."""
    return Client(config).fetch_with_host(host, raw_url)


def fetch_with_cert(
    raw_url: str, cert_pem: bytes, key_pem: bytes, config: Optional[ClientConfig] = None
) -> Response:
    """Module-level :meth:`Client.fetch_with_cert`."""
    return Client(config).fetch_with_cert(raw_url, cert_pem, key_pem)


def fetch_with_host_and_cert(
    host: str,
    raw_url: str,
    cert_pem: bytes,
    key_pem: bytes,
    config: Optional[ClientConfig] = None,
) -> Response:
    """Module-level :meth:`Client.fetch_with_host_and_cert`."""
    return Client(config).fetch_with_host_and_cert(host, raw_url, cert_pem, key_pem)
