"""Shared Gemini type definitions to avoid circular imports."""

from dataclasses import dataclass
from typing import Callable, Iterable, Optional
from urllib.parse import SplitResult


@dataclass(frozen=True)
class ResponseHeader:
    """Parsed ``<status> <meta>`` response header line."""

    status: int
    meta: str


@dataclass
class GeminiRequest:
    """Represents a request received by the server."""

    url: SplitResult
    raw_url: str


@dataclass
class GeminiResponse:
    """Represents a response a server handler wants sent to the client."""

    status: int
    meta: str
    body: bytes = b""
    body_iter: Optional[Iterable[bytes]] = None


Handler = Callable[[GeminiRequest], GeminiResponse]
