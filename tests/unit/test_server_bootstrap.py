"""Unit tests for server TLS setup, the listener and the accept loop."""

import logging
import socket
import ssl
import stat
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from gemini.bootstrap.config import ServerConfig
from gemini.bootstrap.socket_factory import build_server_context, create_server_socket
from gemini.domain.errors import ServerStartError
from gemini.lifecycle.state import ServerLifecycle
from gemini.transport.accept_loop import listen_and_serve, run_server
from tests.utils.gemini import make_certificate

ACCEPT_LOOP = "gemini.transport.accept_loop"


def _events(caplog) -> list[str]:
    return [getattr(record, "event", None) for record in caplog.records]


@pytest.fixture(name="cert_files")
def cert_files_fixture(tmp_path: Path) -> tuple[Path, Path]:
    return make_certificate("localhost", dns_names=["localhost"]).write(tmp_path)


class TestBuildServerContext:
    def test_loads_certificate_with_tls12_minimum(self, cert_files):
        context = build_server_context(*map(str, cert_files))

        assert isinstance(context, ssl.SSLContext)
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2

    def test_missing_certificate_is_start_error(self, tmp_path: Path, caplog):
        with caplog.at_level(logging.CRITICAL, logger="gemini"):
            with pytest.raises(ServerStartError):
                build_server_context(
                    str(tmp_path / "absent.crt"), str(tmp_path / "absent.key")
                )

        assert "certificate_load_failed" in _events(caplog)

    def test_mismatched_key_is_start_error(self, tmp_path: Path, cert_files):
        other_key = make_certificate("other").write(tmp_path, "other")[1]

        with pytest.raises(ServerStartError):
            build_server_context(str(cert_files[0]), str(other_key))

    def test_keylog_file_created_private(self, tmp_path: Path, cert_files, caplog):
        keylog = tmp_path / "keys.log"

        with caplog.at_level(logging.WARNING, logger="gemini"):
            context = build_server_context(*map(str, cert_files), str(keylog))

        assert context.keylog_filename == str(keylog)
        assert stat.S_IMODE(keylog.stat().st_mode) == 0o600
        assert "keylog_enabled" in _events(caplog)

    def test_unwritable_keylog_is_skipped(self, tmp_path: Path, cert_files, caplog):
        keylog = tmp_path / "missing-dir" / "keys.log"

        with caplog.at_level(logging.WARNING, logger="gemini"):
            context = build_server_context(*map(str, cert_files), str(keylog))

        assert context.keylog_filename is None
        assert "keylog_unavailable" in _events(caplog)


class TestCreateServerSocket:
    def test_listener_polls_for_shutdown(self):
        server_socket = create_server_socket("127.0.0.1", 0)
        try:
            assert server_socket.gettimeout() == 0.5
            assert server_socket.getsockname()[0] == "127.0.0.1"
        finally:
            server_socket.close()

    def test_bind_failure_is_start_error(self, caplog):
        with patch(
            "gemini.bootstrap.socket_factory.socket.create_server",
            side_effect=OSError("address in use"),
        ):
            with caplog.at_level(logging.CRITICAL, logger="gemini"):
                with pytest.raises(ServerStartError):
                    create_server_socket("127.0.0.1", 1965)

        assert "bind_failed" in _events(caplog)


class TestRunServer:
    def test_accepts_until_stopped_then_drains(self, caplog):
        client = MagicMock(spec=socket.socket)
        server_socket = MagicMock(spec=socket.socket)
        server_socket.accept.side_effect = [
            (client, ("127.0.0.1", 50000)),
            socket.timeout(),
        ]
        lifecycle = ServerLifecycle()
        lifecycle.begin_draining()
        config = ServerConfig(socket_timeout=1, shutdown_grace_seconds=1)

        with patch(f"{ACCEPT_LOOP}._handle_accepted_client") as handle:
            with caplog.at_level(logging.INFO, logger="gemini"):
                run_server(server_socket, MagicMock(), MagicMock(), config, lifecycle)

        handle.assert_called_once()
        assert handle.call_args[0][:2] == (client, ("127.0.0.1", 50000))
        server_socket.close.assert_called_once()
        assert "shutdown_waiting" in _events(caplog)
        assert "server_stopped" in _events(caplog)

    def test_accept_errors_logged_and_loop_continues(self, caplog):
        server_socket = MagicMock(spec=socket.socket)
        server_socket.accept.side_effect = [OSError("accept failed"), socket.timeout()]
        lifecycle = MagicMock(spec=ServerLifecycle)
        lifecycle.is_draining.side_effect = [False, True]
        config = ServerConfig(socket_timeout=1, shutdown_grace_seconds=1)

        with caplog.at_level(logging.ERROR, logger="gemini"):
            run_server(server_socket, MagicMock(), MagicMock(), config, lifecycle)

        assert "accept_error" in _events(caplog)
        lifecycle.wait_for_connections.assert_called_once_with(1)


class TestListenAndServe:
    @pytest.fixture(name="patched")
    def patched_fixture(self):
        with patch(f"{ACCEPT_LOOP}.build_server_context") as build, patch(
            f"{ACCEPT_LOOP}.create_server_socket"
        ) as create, patch(f"{ACCEPT_LOOP}.run_server") as run:
            yield build, create, run

    def test_empty_address_uses_default(self, patched, monkeypatch):
        monkeypatch.delenv("SSLKEYLOGFILE", raising=False)
        build, create, run = patched

        listen_and_serve("", "server.crt", "server.key", MagicMock())

        build.assert_called_once_with("server.crt", "server.key", None)
        create.assert_called_once_with("127.0.0.1", 1965)
        run.assert_called_once()

    def test_address_and_keylog_environment(self, patched, monkeypatch):
        monkeypatch.setenv("SSLKEYLOGFILE", "/tmp/keys.log")
        build, create, _ = patched

        listen_and_serve("[::1]:1970", "server.crt", "server.key", MagicMock())

        assert build.call_args[0][2] == "/tmp/keys.log"
        create.assert_called_once_with("::1", 1970)
