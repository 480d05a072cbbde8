"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, Sequence, TypedDict

import pytest

from tests.utils.gemini import make_certificate, reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    directory: Path
    process: subprocess.Popen[bytes]
    log_file: Path
    cert_file: Path


def _populate_capsule(directory: Path) -> None:
    (directory / "index.gmi").write_text("# Test capsule\n=> notes/ Notes\n")
    (directory / "notes").mkdir()
    (directory / "notes" / "index.gmi").write_text("# Notes\n")
    (directory / "notes" / "plain.txt").write_text("plain text\n")


def _launch_server(
    workdir: Path,
    dns_names: Sequence[str],
    ip_addresses: Sequence[str],
    extra_args: list[str] | None = None,
) -> Generator[ServerProcessInfo, None, None]:
    host = "127.0.0.1"
    port = reserve_port(host)
    capsule = workdir / "capsule"
    capsule.mkdir()
    _populate_capsule(capsule)
    common_name = dns_names[0] if dns_names else None
    cert_file, key_file = make_certificate(
        common_name, dns_names=dns_names, ip_addresses=ip_addresses
    ).write(workdir)
    log_file = workdir / "server.log"

    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "serve",
        "--cert",
        str(cert_file),
        "--key",
        str(key_file),
        "--directory",
        str(capsule),
        "--host",
        host,
        "--port",
        str(port),
        "--log-destination",
        str(log_file),
    ]
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout.decode(errors='replace')}")
            print(f"\nServer stderr:\n{stderr.decode(errors='replace')}")
            raise

        yield {
            "base_url": f"gemini://{host}:{port}",
            "host": host,
            "port": port,
            "directory": capsule,
            "process": process,
            "log_file": log_file,
            "cert_file": cert_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Serve a small capsule with a certificate valid for localhost and 127.0.0.1."""

    workdir = tmp_path_factory.mktemp("gemini-server")
    yield from _launch_server(
        workdir,
        ["localhost"],
        ["127.0.0.1"],
        ["--shutdown-grace-seconds", "5", "--socket-timeout", "30"],
    )


@pytest.fixture(name="foreign_server_process")
def _foreign_server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Serve the capsule with a certificate issued for another host."""

    workdir = tmp_path_factory.mktemp("gemini-foreign-server")
    yield from _launch_server(workdir, ["other.example"], [])


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
