"""Command line entry point: fetch a Gemini URL or serve a capsule directory."""

import argparse
import logging
import shutil
import signal
import sys
from pathlib import Path
from typing import Optional

from gemini.bootstrap.config import (
    ServerConfig,
    client_config_from_args,
    parse_cli_args,
)
from gemini.bootstrap.logging_setup import configure_logging
from gemini.client.client import Client
from gemini.client.resolver import join_host_port
from gemini.domain.correlation_id import CorrelationLoggerAdapter
from gemini.domain.errors import ClientCertificateError, GeminiError
from gemini.domain.status import STATUS_SUCCESS, simplify_status
from gemini.handlers.file_handler import make_file_handler
from gemini.lifecycle.state import ServerLifecycle
from gemini.transport.accept_loop import listen_and_serve

MAIN_LOGGER = CorrelationLoggerAdapter(logging.getLogger("gemini.main"), {})


def _read_client_certificate(args: argparse.Namespace) -> tuple[bytes, bytes]:
    if bool(args.cert) != bool(args.key):
        raise SystemExit("--cert and --key must be given together")
    if not args.cert:
        return b"", b""
    try:
        return Path(args.cert).read_bytes(), Path(args.key).read_bytes()
    except OSError as error:
        raise ClientCertificateError(
            f"cannot read client certificate: {error}"
        ) from error


def run_fetch(args: argparse.Namespace) -> int:
    """Fetch ``args.url``; the header goes to stderr and the body to stdout."""
    configure_logging(args.log_level, args.log_destination, stream=sys.stderr)
    client = Client(client_config_from_args(args))

    try:
        cert_pem, key_pem = _read_client_certificate(args)
        response = client.fetch_with_host_and_cert(
            args.host, args.url, cert_pem, key_pem
        )
    except GeminiError as error:
        print(f"error: {error}", file=sys.stderr)
        return 1

    with response:
        print(f"{response.status} {response.meta}", file=sys.stderr)
        try:
            shutil.copyfileobj(response.body, sys.stdout.buffer)
        except GeminiError as error:
            print(f"error: {error}", file=sys.stderr)
            return 1
        sys.stdout.buffer.flush()
    return 0 if simplify_status(response.status) == STATUS_SUCCESS else 1


def run_serve(args: argparse.Namespace) -> int:
    """Serve ``args.directory`` until SIGINT or SIGTERM, then drain."""
    configure_logging(args.log_level, args.log_destination)

    config = ServerConfig(
        socket_timeout=args.socket_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
    )
    lifecycle = ServerLifecycle()

    def shutdown_handler(signum: int, _frame) -> None:
        MAIN_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "shutdown_signal", "signal": signum},
        )
        lifecycle.begin_draining(signal.Signals(signum).name)

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    MAIN_LOGGER.info(
        "Starting Gemini server",
        extra={
            "event": "server_starting",
            "host": args.host,
            "port": args.port,
            "directory": args.directory,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
            "socket_timeout": config.socket_timeout,
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
        },
    )
    try:
        listen_and_serve(
            join_host_port(args.host, args.port),
            args.cert,
            args.key,
            make_file_handler(args.directory),
            config,
            lifecycle,
        )
    except GeminiError as error:
        MAIN_LOGGER.critical(
            "Server failed to start",
            extra={"event": "server_start_failed", "error_type": type(error).__name__},
        )
        return 1
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    if args.command == "fetch":
        return run_fetch(args)
    return run_serve(args)


if __name__ == "__main__":
    sys.exit(main())
