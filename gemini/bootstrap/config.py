"""Client and server configuration and CLI argument parsing."""

import argparse
import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


GEMINI_SCHEME = "gemini"
DEFAULT_PORT = 1965
DEFAULT_SERVER_ADDRESS = "127.0.0.1"
URL_MAX_LENGTH = 1024
META_MAX_LENGTH = 1024
CRLF = b"\r\n"
KEYLOG_ENV_VAR = "SSLKEYLOGFILE"

DEFAULT_CONNECT_TIMEOUT = _env_float("GEMINI_CONNECT_TIMEOUT", 15.0)
DEFAULT_READ_TIMEOUT = _env_float("GEMINI_READ_TIMEOUT", None)
DEFAULT_ALLOW_INVALID_STATUSES = _env_bool("GEMINI_ALLOW_INVALID_STATUSES", False)
DEFAULT_SOCKET_TIMEOUT = _env_int("GEMINI_SERVER_SOCKET_TIMEOUT", 30)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_int("GEMINI_SERVER_SHUTDOWN_GRACE_SECONDS", 30)


@dataclass(frozen=True)
class ClientCertificate:
    """PEM encoded certificate and private key presented for mutual TLS."""

    cert_pem: bytes
    key_pem: bytes

    def __repr__(self) -> str:
        return f"ClientCertificate(cert_pem=<{len(self.cert_pem)} bytes>, key_pem=<redacted>)"


@dataclass(frozen=True)
class ClientConfig:
    """Immutable client settings, safe to share between threads.

    ``insecure`` disables every certificate check and overrides
    ``no_hostname_check`` and ``no_time_check``. ``connect_timeout`` bounds the
    dial and handshake and, when ``read_timeout`` is unset, also the request
    write and header read. ``read_timeout`` bounds everything after the
    handshake, body included, so leave it unset for streamed responses.
    """

    no_time_check: bool = False
    no_hostname_check: bool = False
    insecure: bool = False
    allow_invalid_statuses: bool = DEFAULT_ALLOW_INVALID_STATUSES
    connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT
    read_timeout: Optional[float] = DEFAULT_READ_TIMEOUT

    def keylog_path(self) -> Optional[str]:
        """Return the TLS key log destination from the process environment."""
        value = os.getenv(KEYLOG_ENV_VAR)
        return value or None


@dataclass(frozen=True)
class ServerConfig:
    """Server configuration including timeouts and shutdown settings."""

    socket_timeout: int
    shutdown_grace_seconds: int


def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    default_log_level = os.getenv("GEMINI_LOG_LEVEL", "INFO").upper()
    default_destination = os.getenv("GEMINI_LOG_DESTINATION", "stdout")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )


def _add_fetch_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="Gemini URL to fetch")
    parser.add_argument(
        "--host", help="Dial this host[:port] instead of the URL host (proxying)"
    )
    parser.add_argument("--cert", help="Path to a PEM client certificate")
    parser.add_argument("--key", help="Path to the PEM client certificate key")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip every server certificate check",
    )
    parser.add_argument(
        "--no-hostname-check",
        action="store_true",
        help="Accept certificates issued for another host",
    )
    parser.add_argument(
        "--no-time-check",
        action="store_true",
        help="Accept expired or not yet valid certificates",
    )
    parser.add_argument(
        "--allow-invalid-statuses",
        action=argparse.BooleanOptionalAction,
        default=DEFAULT_ALLOW_INVALID_STATUSES,
        help="Pass through status codes the protocol does not define",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=DEFAULT_CONNECT_TIMEOUT,
        help="Seconds allowed for connect, handshake and response header",
    )
    parser.add_argument(
        "--read-timeout",
        type=float,
        default=DEFAULT_READ_TIMEOUT,
        help="Seconds allowed for the whole exchange after the handshake",
    )


def _add_serve_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--directory", default=".")
    parser.add_argument("--host", default=DEFAULT_SERVER_ADDRESS)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument(
        "--cert", required=True, help="Path to TLS certificate file"
    )
    parser.add_argument("--key", required=True, help="Path to TLS private key file")
    parser.add_argument(
        "--socket-timeout",
        type=int,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Socket timeout in seconds for request processing",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=int,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period in seconds for graceful shutdown",
    )


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for the fetch and serve commands."""
    parser = argparse.ArgumentParser(description="Gemini client and server")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch a Gemini URL")
    _add_fetch_arguments(fetch_parser)
    _add_logging_arguments(fetch_parser)

    serve_parser = subparsers.add_parser("serve", help="Serve a directory")
    _add_serve_arguments(serve_parser)
    _add_logging_arguments(serve_parser)

    return parser.parse_args(argv)


def client_config_from_args(args: argparse.Namespace) -> ClientConfig:
    """Build the immutable client configuration from parsed fetch arguments."""
    return ClientConfig(
        no_time_check=args.no_time_check,
        no_hostname_check=args.no_hostname_check,
        insecure=args.insecure,
        allow_invalid_statuses=args.allow_invalid_statuses,
        connect_timeout=args.connect_timeout,
        read_timeout=args.read_timeout,
    )
