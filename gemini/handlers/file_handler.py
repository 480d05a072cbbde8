"""Static capsule handler serving files from a sandboxed directory."""

import logging
import mimetypes
from pathlib import Path
from typing import Iterator

from gemini.domain.correlation_id import CorrelationLoggerAdapter
from gemini.domain.gemini_types import GeminiRequest, GeminiResponse, Handler
from gemini.domain.response_builders import (
    GEMTEXT_MIME,
    bad_request_response,
    not_found_response,
    success_response,
)
from gemini.domain.sandbox import ForbiddenPath, resolve_sandbox_path

FILE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("gemini.handlers.file"), {})

INDEX_DOCUMENT = "index.gmi"
GEMTEXT_SUFFIXES = {".gmi", ".gemini"}


def stream_file(filepath: Path, chunk_size: int = 65536) -> Iterator[bytes]:
    """Yield file contents in fixed-size chunks for streaming responses."""
    with open(filepath, "rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
                FILE_LOGGER.debug(
                    "File chunk sent",
                    extra={"event": "file_chunk_sent", "bytes_out": len(chunk)},
                )
            yield chunk


def mime_type_for_path(filepath: Path) -> str:
    if filepath.suffix.lower() in GEMTEXT_SUFFIXES:
        return GEMTEXT_MIME
    mime_type, _ = mimetypes.guess_type(filepath.as_posix())
    return mime_type or "application/octet-stream"


def file_response(request: GeminiRequest, directory: str) -> GeminiResponse:
    """Serve the file named by the request path, or a directory's index."""
    url_path = request.url.path
    try:
        resolved_path = resolve_sandbox_path(directory, url_path)
    except ForbiddenPath:
        FILE_LOGGER.warning(
            "Forbidden path access attempt",
            extra={"event": "forbidden_path", "path": url_path},
        )
        return bad_request_response("path is outside the capsule")

    if resolved_path.is_dir():
        resolved_path = resolved_path / INDEX_DOCUMENT

    if not resolved_path.is_file():
        if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
            FILE_LOGGER.debug(
                "File not found",
                extra={"event": "file_not_found", "path": url_path},
            )
        return not_found_response()

    FILE_LOGGER.info(
        "Serving file",
        extra={"event": "file_served", "path": resolved_path.as_posix()},
    )
    return success_response(
        mime_type_for_path(resolved_path), body_iter=stream_file(resolved_path)
    )


def make_file_handler(directory: str) -> Handler:
    """Return a handler serving ``directory`` as a capsule."""

    def handle(request: GeminiRequest) -> GeminiResponse:
        return file_response(request, directory)

    return handle
