"""Gemini wire framing: request line, response header line and body hand-off."""

import logging
from typing import Callable, Optional, Protocol
from urllib.parse import SplitResult, urlsplit

from gemini.bootstrap.config import (
    CRLF,
    META_MAX_LENGTH,
    URL_MAX_LENGTH,
)
from gemini.client.resolver import with_default_scheme
from gemini.domain.correlation_id import CorrelationLoggerAdapter
from gemini.domain.errors import (
    HeaderReadError,
    InvalidStatusCode,
    MalformedHeader,
    MetaTooLong,
    RequestWriteError,
    URLParseError,
    URLTooLong,
)
from gemini.domain.gemini_types import GeminiResponse, ResponseHeader
from gemini.domain.status import is_status_valid

CODEC_LOGGER = CorrelationLoggerAdapter(logging.getLogger("gemini.pipeline.codec"), {})

STATUS_DIGITS = 2
# "<status> <meta>" without the terminator.
HEADER_LINE_MAX_LENGTH = STATUS_DIGITS + 1 + META_MAX_LENGTH
REQUEST_LINE_MAX_LENGTH = URL_MAX_LENGTH


class Writer(Protocol):
    def sendall(self, data: bytes) -> None:
        ...


class Reader(Protocol):
    def recv(self, size: int) -> bytes:
        ...


def serialize_request(url: str) -> bytes:
    """Return the request line for ``url``: the URL itself followed by CRLF."""
    return url.encode("utf-8") + CRLF


def send_request(conn: Writer, url: str) -> None:
    """Write the request line in a single call."""
    try:
        conn.sendall(serialize_request(url))
    except OSError as error:
        raise RequestWriteError(
            f"could not send request to the server: {error}"
        ) from error
    if CODEC_LOGGER.logger.isEnabledFor(logging.DEBUG):
        CODEC_LOGGER.debug(
            "Request line sent",
            extra={"event": "request_sent", "bytes_out": len(url) + len(CRLF)},
        )


def read_line(
    read_byte: Callable[[], bytes], max_length: int, too_long: Callable[[], Exception]
) -> Optional[bytes]:
    """Read one CRLF terminated line a byte at a time.

    Returns the line without its terminator, or None if the stream ended
    before any byte arrived. A bare LF terminator raises
    :class:`MalformedHeader`; an end of stream mid-line raises
    :class:`HeaderReadError`; more than ``max_length`` bytes before the CRLF
    raises whatever ``too_long`` builds.
    """
    line = bytearray()
    while True:
        byte = read_byte()
        if not byte:
            if not line:
                return None
            raise HeaderReadError("connection closed before the line was complete")
        line += byte
        if line.endswith(CRLF):
            return bytes(line[: -len(CRLF)])
        if byte == b"\n":
            raise MalformedHeader("line terminated by LF without CR")
        # One extra byte leaves room for a trailing CR.
        if len(line) > max_length + 1:
            raise too_long()


def read_header_line(conn: Reader) -> bytes:
    """Read the response header line from ``conn``."""

    def read_byte() -> bytes:
        try:
            return conn.recv(1)
        except OSError as error:
            raise HeaderReadError(f"failed to read header: {error}") from error

    line = read_line(
        read_byte,
        HEADER_LINE_MAX_LENGTH,
        lambda: MetaTooLong(f"meta string is longer than {META_MAX_LENGTH} bytes"),
    )
    if line is None:
        raise HeaderReadError("connection closed before a header was received")
    return line


def parse_header(line: bytes) -> ResponseHeader:
    """Split a header line into its two digit status and its meta string.

    Meta is everything after the first space. A line made of the status
    digits alone carries an empty meta.
    """
    try:
        text = line.decode("utf-8")
    except UnicodeDecodeError as error:
        raise MalformedHeader("header is not valid UTF-8") from error

    if len(text) == STATUS_DIGITS and text.isascii() and text.isdigit():
        return ResponseHeader(int(text), "")

    fields = text.split()
    if not fields:
        raise MalformedHeader("empty header line")
    if len(fields) < 2 and not text.endswith(" "):
        raise MalformedHeader("header not formatted correctly")

    status_field = text[:STATUS_DIGITS]
    is_digits = status_field.isascii() and status_field.isdigit()
    if not is_digits or fields[0] != status_field:
        raise MalformedHeader(f"unexpected status value {fields[0]!r}")
    if text[STATUS_DIGITS] != " ":
        raise MalformedHeader("status must be followed by a single space")

    meta = text[STATUS_DIGITS + 1 :]
    if len(meta.encode("utf-8")) > META_MAX_LENGTH:
        raise MetaTooLong(f"meta string is longer than {META_MAX_LENGTH} bytes")
    return ResponseHeader(int(status_field), meta)


def read_header(conn: Reader) -> ResponseHeader:
    """Read and parse the response header; the body follows on ``conn``."""
    header = parse_header(read_header_line(conn))
    if CODEC_LOGGER.logger.isEnabledFor(logging.DEBUG):
        CODEC_LOGGER.debug(
            "Response header parsed",
            extra={"event": "header_parsed", "status_code": header.status},
        )
    return header


def check_status(header: ResponseHeader, allow_invalid_statuses: bool) -> None:
    """Reject status codes the protocol does not define unless allowed."""
    if allow_invalid_statuses or is_status_valid(header.status):
        return
    raise InvalidStatusCode(header.status)


def serialize_header(status: int, meta: str) -> bytes:
    """Return ``<status> <meta>\\r\\n``."""
    return f"{status} {meta}".encode("utf-8") + CRLF


def read_request_line(conn: Reader) -> Optional[str]:
    """Read the request URL a client sent; None if it disconnected first."""
    line = read_line(
        lambda: conn.recv(1),
        REQUEST_LINE_MAX_LENGTH,
        lambda: URLTooLong(REQUEST_LINE_MAX_LENGTH + 2, REQUEST_LINE_MAX_LENGTH),
    )
    if line is None:
        return None
    try:
        return line.decode("utf-8")
    except UnicodeDecodeError as error:
        raise URLParseError("request URL is not valid UTF-8") from error


def parse_request_url(raw_url: str) -> SplitResult:
    """Parse a received request URL, defaulting the scheme to ``gemini``."""
    try:
        parsed = urlsplit(with_default_scheme(raw_url))
        _ = parsed.port
    except ValueError as error:
        raise URLParseError("couldn't parse request URL") from error
    if "@" in parsed.netloc:
        raise URLParseError("userinfo not allowed in request URL")
    return parsed


def write_response(conn: Writer, response: GeminiResponse) -> int:
    """Write the header line then the body; returns the number of bytes sent."""
    header_line = serialize_header(response.status, response.meta)
    conn.sendall(header_line)
    sent = len(header_line)
    if response.body:
        conn.sendall(response.body)
        sent += len(response.body)
    if response.body_iter is not None:
        for chunk in response.body_iter:
            if not chunk:
                continue
            conn.sendall(chunk)
            sent += len(chunk)
    return sent
