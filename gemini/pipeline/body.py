"""Forward-only response body stream bound to the connection that carries it."""

import io
import logging

from gemini.domain.correlation_id import CorrelationLoggerAdapter
from gemini.domain.errors import BodyReadError

BODY_LOGGER = CorrelationLoggerAdapter(logging.getLogger("gemini.pipeline.body"), {})


class ResponseBody(io.RawIOBase):
    """Bytes following the header line, up to the server closing the connection.

    The length is unknown until the stream ends and the stream cannot be
    rewound. Closing the body closes the connection; callers must do so once
    they are done, whether or not they read everything.
    """

    def __init__(self, connection) -> None:
        super().__init__()
        self._connection = connection
        self._bytes_read = 0

    @property
    def bytes_read(self) -> int:
        """Number of body bytes consumed so far."""
        return self._bytes_read

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed body")
        try:
            count = self._connection.recv_into(buffer)
        except OSError as error:
            raise BodyReadError(f"failed to read response body: {error}") from error
        self._bytes_read += count
        return count

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._connection.close()
        finally:
            super().close()
            if BODY_LOGGER.logger.isEnabledFor(logging.DEBUG):
                BODY_LOGGER.debug(
                    "Response body released",
                    extra={"event": "body_closed", "bytes_in": self._bytes_read},
                )
