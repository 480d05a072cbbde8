"""Exception taxonomy for Gemini client and server failures."""

from typing import Optional


class GeminiError(Exception):
    """Base class for every protocol, network and trust failure."""


class URLParseError(GeminiError, ValueError):
    """Raised when a request URL cannot be parsed or is not acceptable."""


class URLTooLong(URLParseError):
    """Raised when the encoded request URL exceeds the protocol limit."""

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"url is {length} bytes, limit is {limit}")
        self.length = length
        self.limit = limit


class HostResolutionError(GeminiError):
    """Raised when the target host cannot be encoded or looked up."""


class TLSHandshakeError(GeminiError):
    """Raised when the TCP dial or TLS handshake fails."""


class ClientCertificateError(GeminiError):
    """Raised when the client certificate/key pair cannot be loaded."""


class CertificateVerificationError(GeminiError):
    """Base class for peer certificate trust failures.

    ``field`` names what failed: ``"hostname"`` or ``"validity"``.
    """

    field = "certificate"


class HostnameMismatch(CertificateVerificationError):
    """Raised when the certificate is not valid for the requested host."""

    field = "hostname"

    def __init__(self, host: str, candidates: Optional[list[str]] = None) -> None:
        candidates = list(candidates or [])
        if candidates:
            detail = f"certificate is valid for {', '.join(candidates)}, not {host}"
        else:
            detail = f"certificate is not valid for {host}"
        super().__init__(detail)
        self.host = host
        self.candidates = candidates


class CertificateExpired(CertificateVerificationError):
    """Raised when the current time is after the certificate's NotAfter."""

    field = "validity"


class CertificateNotYetValid(CertificateVerificationError):
    """Raised when the current time is before the certificate's NotBefore."""

    field = "validity"


class RequestWriteError(GeminiError):
    """Raised when the request line cannot be written to the server."""


class HeaderReadError(GeminiError):
    """Raised when the response header cannot be read in full."""


class MalformedHeader(GeminiError, ValueError):
    """Raised when the response header line violates the framing rules."""


class MetaTooLong(MalformedHeader):
    """Raised when the meta string exceeds the protocol limit."""


class InvalidStatusCode(GeminiError):
    """Raised when a well-formed status code is not defined by the protocol."""

    def __init__(self, status: int) -> None:
        super().__init__(f"invalid status code: {status}")
        self.status = status


class BodyReadError(GeminiError):
    """Raised when reading the response body fails."""


class StatusError(Exception):
    """Error carrying the status a server handler wants reported to the client."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        return f"Status {self.status}: {self.message}"


class ServerStartError(GeminiError):
    """Raised when the server cannot load its certificate or bind its address."""
