"""Normalize user input into an absolute request URL and a dial address."""

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import SplitResult, urlsplit, urlunsplit

import idna

from gemini.bootstrap.config import DEFAULT_PORT, GEMINI_SCHEME, URL_MAX_LENGTH
from gemini.domain.correlation_id import CorrelationLoggerAdapter
from gemini.domain.errors import HostResolutionError, URLParseError, URLTooLong

RESOLVER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("gemini.client.resolver"), {}
)


@dataclass(frozen=True)
class RequestURL:
    """An absolute request URL ready to be written on the wire.

    ``url`` is the exact text sent to the server, with the host converted to
    its ASCII form. ``unicode_host`` keeps the decoded form so that identity
    checks can accept certificates naming either one.
    """

    url: str
    scheme: str
    host: str
    unicode_host: str
    port: int
    path: str
    query: str

    @property
    def encoded_length(self) -> int:
        """Length of the request URL in UTF-8 bytes."""
        return len(self.url.encode("utf-8"))

    @property
    def address(self) -> tuple[str, int]:
        """The ``(host, port)`` pair to dial."""
        return self.host, self.port

    @property
    def verification_hosts(self) -> tuple[str, ...]:
        """Host forms a peer certificate may legitimately name."""
        if self.unicode_host and self.unicode_host != self.host:
            return self.host, self.unicode_host
        return (self.host,)


def is_ip_literal(host: str) -> bool:
    """Return True for IPv4/IPv6 literals, optionally in square brackets."""
    if len(host) >= 3 and host[0] == "[" and host[-1] == "]":
        host = host[1:-1]
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def to_ascii_host(host: str) -> str:
    """Return the IDNA (punycode) form of ``host``; IP literals pass through."""
    if not host or is_ip_literal(host) or host.isascii():
        return host
    try:
        return idna.encode(host, uts46=True).decode("ascii")
    except idna.IDNAError as error:
        raise HostResolutionError(f"failed to punycode host {host}: {error}") from error


def to_unicode_host(host: str) -> str:
    """Return the Unicode form of an ASCII host, or the host itself if it has none."""
    if not host or is_ip_literal(host) or "xn--" not in host.lower():
        return host
    try:
        return idna.decode(host)
    except idna.IDNAError:
        if RESOLVER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            RESOLVER_LOGGER.debug(
                "Host has no Unicode form",
                extra={"event": "idna_decode_failed", "host": host},
            )
        return host


def split_host_port(hostport: str, default_port: int = DEFAULT_PORT) -> tuple[str, int]:
    """Split ``host[:port]`` (IPv6 in brackets) and apply the default port."""
    if not hostport:
        raise HostResolutionError("empty host")

    if hostport.startswith("["):
        end = hostport.find("]")
        if end == -1:
            raise HostResolutionError(f"missing ']' in host {hostport}")
        host = hostport[1:end]
        remainder = hostport[end + 1 :]
        if not remainder:
            return host, default_port
        if not remainder.startswith(":"):
            raise HostResolutionError(f"unexpected text after ']' in {hostport}")
        port_text = remainder[1:]
    elif hostport.count(":") == 1:
        host, port_text = hostport.split(":")
    else:
        # Bare host, or an unbracketed IPv6 literal.
        return hostport, default_port

    if not port_text:
        return host, default_port
    if not port_text.isdigit() or not 0 < int(port_text) <= 65535:
        raise HostResolutionError(f"invalid port {port_text!r} in {hostport}")
    return host, int(port_text)


def join_host_port(host: str, port: int) -> str:
    """Combine host and port, bracketing IPv6 literals."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


# RFC 3986 scheme followed by an authority, anchored at the start.
SCHEME_PREFIX = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


def with_default_scheme(raw_url: str) -> str:
    """Prefix ``gemini://`` unless ``raw_url`` starts with its own scheme.

    Only a leading scheme counts, so a ``://`` later in the path or query
    (``example.com/search?q=gemini://x``) does not. A scheme-relative
    ``//host/`` gets ``gemini:`` in front.
    """
    if raw_url.startswith("//"):
        return f"{GEMINI_SCHEME}:{raw_url}"
    if SCHEME_PREFIX.match(raw_url):
        return raw_url
    return f"{GEMINI_SCHEME}://{raw_url}"


def _split(raw_url: str) -> tuple[SplitResult, Optional[int]]:
    try:
        parsed = urlsplit(raw_url)
        port = parsed.port
    except ValueError as error:
        raise URLParseError(f"failed to parse URL {raw_url!r}: {error}") from error
    return parsed, port


def resolve_url(raw_url: str, default_port: int = DEFAULT_PORT) -> RequestURL:
    """Turn user input into a :class:`RequestURL`.

    Raises :class:`URLParseError` for unparsable input, user-info, control
    characters or a missing host, :class:`HostResolutionError` when the host
    cannot be IDNA encoded, and :class:`URLTooLong` when the final request
    URL exceeds 1024 bytes. No network I/O happens here.
    """
    if any(char in raw_url for char in "\r\n\x00"):
        raise URLParseError("URL must not contain CR, LF or NUL characters")

    absolute_url = with_default_scheme(raw_url.strip())
    parsed, port = _split(absolute_url)

    if "@" in parsed.netloc:
        raise URLParseError("user info is not allowed in request URLs")
    hostname = parsed.hostname
    if not hostname:
        raise URLParseError(f"URL {raw_url!r} has no host")

    # urlsplit lower-cases the host; keep the caller's spelling for the wire.
    host_text = _raw_host(parsed.netloc)
    ascii_host = to_ascii_host(host_text)

    if ascii_host == host_text:
        request_url = absolute_url
    else:
        netloc = f"[{ascii_host}]" if ":" in ascii_host else ascii_host
        if port is not None:
            netloc = f"{netloc}:{port}"
        request_url = urlunsplit(parsed._replace(netloc=netloc))

    length = len(request_url.encode("utf-8"))
    if length > URL_MAX_LENGTH:
        raise URLTooLong(length, URL_MAX_LENGTH)

    resolved = RequestURL(
        url=request_url,
        scheme=parsed.scheme,
        host=ascii_host.strip("[]"),
        unicode_host=to_unicode_host(ascii_host.strip("[]")),
        port=port if port is not None else default_port,
        path=parsed.path,
        query=parsed.query,
    )
    if RESOLVER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        RESOLVER_LOGGER.debug(
            "Request URL resolved",
            extra={
                "event": "url_resolved",
                "host": resolved.host,
                "port": resolved.port,
                "url_bytes": length,
            },
        )
    return resolved


def _raw_host(netloc: str) -> str:
    if netloc.startswith("["):
        return netloc[1 : netloc.find("]")]
    return netloc.rsplit(":", 1)[0] if ":" in netloc else netloc


def resolve_dial_target(hostport: str) -> tuple[str, int, str]:
    """Return ``(ascii_host, port, original_host)`` for an explicit dial target."""
    host, port = split_host_port(hostport)
    return to_ascii_host(host), port, host


def get_punycode_url(raw_url: str) -> str:
    """Return ``raw_url`` with only its host converted to punycode."""
    return resolve_url(raw_url).url
