"""Unit tests for response builders, the sandbox and the capsule handler."""

from pathlib import Path
from urllib.parse import urlsplit

import pytest

from gemini.domain.errors import StatusError
from gemini.domain.gemini_types import GeminiRequest
from gemini.domain.response_builders import (
    GEMTEXT_MIME,
    bad_request_response,
    error_response,
    text_response,
)
from gemini.domain.sandbox import ForbiddenPath, resolve_sandbox_path
from gemini.handlers.file_handler import file_response, make_file_handler


def _request(url: str) -> GeminiRequest:
    return GeminiRequest(urlsplit(url), url)


def _body(response) -> bytes:
    return response.body + b"".join(response.body_iter or [])


class TestErrorResponse:
    def test_plain_error_is_temporary_failure(self):
        response = error_response(ValueError("database offline"))
        assert (response.status, response.meta) == (40, "database offline")
        assert response.body == b""

    def test_status_error_keeps_status(self):
        response = error_response(StatusError(52, "removed"))
        assert (response.status, response.meta) == (52, "Status 52: removed")

    def test_none_is_a_programming_error(self):
        with pytest.raises(TypeError):
            error_response(None)


def test_text_response_is_gemtext():
    response = text_response("Hello World")
    assert (response.status, response.meta, response.body) == (
        20,
        GEMTEXT_MIME,
        b"Hello World",
    )


def test_bad_request_meta():
    assert bad_request_response("nope").meta == "Bad URL: nope"


class TestSandbox:
    def test_resolves_inside_directory(self, tmp_path: Path):
        assert resolve_sandbox_path(str(tmp_path), "/a/b.gmi") == tmp_path.resolve() / "a" / "b.gmi"

    def test_empty_path_is_root(self, tmp_path: Path):
        assert resolve_sandbox_path(str(tmp_path), "") == tmp_path.resolve()

    @pytest.mark.parametrize("path", ["/../etc/passwd", "/a/../../x", "/%2e%2e/x", "/a%00b"])
    def test_escapes_rejected(self, tmp_path: Path, path: str):
        with pytest.raises(ForbiddenPath):
            resolve_sandbox_path(str(tmp_path), path)

    def test_symlink_escape_rejected(self, tmp_path: Path):
        outside = tmp_path / "outside"
        outside.mkdir()
        capsule = tmp_path / "capsule"
        capsule.mkdir()
        (capsule / "link").symlink_to(outside)
        with pytest.raises(ForbiddenPath):
            resolve_sandbox_path(str(capsule), "/link/file")


class TestFileHandler:
    @pytest.fixture(name="capsule")
    def capsule_fixture(self, tmp_path: Path) -> Path:
        (tmp_path / "index.gmi").write_text("# Welcome\n")
        (tmp_path / "notes").mkdir()
        (tmp_path / "notes" / "index.gmi").write_text("# Notes\n")
        (tmp_path / "notes" / "plain.txt").write_text("plain text\n")
        (tmp_path / "data.bin").write_bytes(b"\x00\x01")
        return tmp_path

    def test_root_serves_index(self, capsule: Path):
        response = file_response(_request("gemini://localhost/"), str(capsule))
        assert (response.status, response.meta) == (20, GEMTEXT_MIME)
        assert _body(response) == b"# Welcome\n"

    def test_missing_path_serves_root_index(self, capsule: Path):
        response = file_response(_request("gemini://localhost"), str(capsule))
        assert _body(response) == b"# Welcome\n"

    def test_directory_serves_its_index(self, capsule: Path):
        response = file_response(_request("gemini://localhost/notes/"), str(capsule))
        assert _body(response) == b"# Notes\n"

    def test_text_file_mime(self, capsule: Path):
        response = file_response(_request("gemini://localhost/notes/plain.txt"), str(capsule))
        assert response.meta == "text/plain"
        assert _body(response) == b"plain text\n"

    def test_unknown_type_is_octet_stream(self, capsule: Path):
        response = file_response(_request("gemini://localhost/data.bin"), str(capsule))
        assert response.meta == "application/octet-stream"

    def test_missing_file_is_51(self, capsule: Path):
        response = file_response(_request("gemini://localhost/nope.gmi"), str(capsule))
        assert response.status == 51

    def test_directory_without_index_is_51(self, capsule: Path):
        (capsule / "empty").mkdir()
        response = file_response(_request("gemini://localhost/empty/"), str(capsule))
        assert response.status == 51

    def test_traversal_is_59(self, capsule: Path):
        response = file_response(_request("gemini://localhost/../secret"), str(capsule))
        assert response.status == 59

    def test_make_file_handler(self, capsule: Path):
        handler = make_file_handler(str(capsule))
        assert handler(_request("gemini://localhost/")).status == 20
