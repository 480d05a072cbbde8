"""Deadline bookkeeping for the connect, header and body phases of a fetch.

The policy has three phases:

* connect: one deadline, measured from the start of the call, bounds the TCP
  dial and the TLS handshake;
* header: without a read timeout the connect deadline is re-applied to the
  request write and the header read, then cleared so a slow or endless body
  is never cut short by it;
* body: with a read timeout, a deadline measured from handshake completion
  bounds everything that follows, body included.
"""

import socket
import time
from dataclasses import dataclass
from typing import Optional

from gemini.bootstrap.config import ClientConfig

NS_PER_SECOND = 1_000_000_000


def _seconds_to_ns(seconds: Optional[float]) -> Optional[int]:
    if seconds is None or seconds <= 0:
        return None
    return int(seconds * NS_PER_SECOND)


def remaining_seconds(deadline_ns: Optional[int]) -> Optional[float]:
    """Seconds left until ``deadline_ns``; None means no deadline.

    Raises ``TimeoutError`` when the deadline has already passed.
    """
    if deadline_ns is None:
        return None
    remaining_ns = deadline_ns - time.monotonic_ns()
    if remaining_ns <= 0:
        raise TimeoutError("Deadline exceeded")
    return remaining_ns / NS_PER_SECOND


def apply_deadline(sock: socket.socket, deadline_ns: Optional[int]) -> None:
    """Set the socket timeout to whatever is left of ``deadline_ns``."""
    sock.settimeout(remaining_seconds(deadline_ns))


@dataclass(frozen=True)
class TimeoutPolicy:
    """Deadlines for one fetch, anchored at the moment the call started."""

    started_ns: int
    connect_timeout_ns: Optional[int]
    read_timeout_ns: Optional[int]

    @classmethod
    def start(cls, config: ClientConfig) -> "TimeoutPolicy":
        """Anchor a policy for a call starting now."""
        return cls(
            started_ns=time.monotonic_ns(),
            connect_timeout_ns=_seconds_to_ns(config.connect_timeout),
            read_timeout_ns=_seconds_to_ns(config.read_timeout),
        )

    def connect_deadline(self) -> Optional[int]:
        """Deadline for dial plus handshake."""
        if self.connect_timeout_ns is None:
            return None
        return self.started_ns + self.connect_timeout_ns

    def read_deadline(self, handshake_done_ns: int) -> Optional[int]:
        """Deadline bounding the rest of the connection, if a read timeout is set."""
        if self.read_timeout_ns is None:
            return None
        return handshake_done_ns + self.read_timeout_ns

    def header_deadline(self, handshake_done_ns: int) -> Optional[int]:
        """Deadline covering the request write and the header read."""
        if self.read_timeout_ns is not None:
            return self.read_deadline(handshake_done_ns)
        return self.connect_deadline()

    def body_deadline(self, handshake_done_ns: int) -> Optional[int]:
        """Deadline for streaming the body; None clears the header deadline."""
        return self.read_deadline(handshake_done_ns)
