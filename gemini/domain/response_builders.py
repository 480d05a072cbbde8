"""Pure Gemini response builders."""

from typing import Iterable, Optional

from gemini.domain.errors import StatusError
from gemini.domain.gemini_types import GeminiResponse
from gemini.domain.status import (
    STATUS_BAD_REQUEST,
    STATUS_NOT_FOUND,
    STATUS_SUCCESS,
    STATUS_TEMPORARY_FAILURE,
    STATUS_UNAVAILABLE,
)

GEMTEXT_MIME = "text/gemini; charset=utf-8"


def success_response(
    mime_type: str = GEMTEXT_MIME,
    body: bytes = b"",
    body_iter: Optional[Iterable[bytes]] = None,
) -> GeminiResponse:
    """Return a 20 response whose meta is the body's MIME type."""
    return GeminiResponse(STATUS_SUCCESS, mime_type, body, body_iter)


def text_response(text: str) -> GeminiResponse:
    """Return a gemtext document."""
    return success_response(GEMTEXT_MIME, text.encode("utf-8"))


def bad_request_response(reason: str) -> GeminiResponse:
    """Return the 59 sent when a request line cannot be accepted."""
    return GeminiResponse(STATUS_BAD_REQUEST, f"Bad URL: {reason}")


def not_found_response(meta: str = "Not found") -> GeminiResponse:
    return GeminiResponse(STATUS_NOT_FOUND, meta)


def draining_response() -> GeminiResponse:
    """Return the 41 sent to requests arriving during shutdown."""
    return GeminiResponse(STATUS_UNAVAILABLE, "Server is shutting down")


def internal_error_response() -> GeminiResponse:
    return GeminiResponse(STATUS_TEMPORARY_FAILURE, "Internal server error")


def error_response(error: Optional[BaseException]) -> GeminiResponse:
    """Build a body-less response whose meta is the error text.

    A :class:`StatusError` supplies its own status; any other error is
    reported as 40 (temporary failure). Passing None is a programming error.
    """
    if error is None:
        raise TypeError("None is not a valid error")
    if isinstance(error, StatusError):
        return GeminiResponse(error.status, str(error))
    return GeminiResponse(STATUS_TEMPORARY_FAILURE, str(error))
