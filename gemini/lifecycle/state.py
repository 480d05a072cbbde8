"""Drain state and in-flight connections of a capsule server.

A server is either serving or draining. Draining starts once (normally on
SIGINT or SIGTERM): the accept loop stops, connections that were already
accepted but have not sent a request yet are answered with status 41, and
requests already being handled run to completion within the grace period.
"""

import logging
import threading
import time
from typing import Optional

from gemini.domain.correlation_id import CorrelationLoggerAdapter
from gemini.domain.gemini_types import GeminiResponse
from gemini.domain.response_builders import draining_response

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("gemini.lifecycle"), {})

JOIN_SLICE_SECONDS = 0.1


class ServerLifecycle:
    """Serving/draining switch plus the connections still in flight.

    Each in-flight connection is recorded against its worker thread with the
    client address, so a drain that runs out of time can say who is left.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._draining = threading.Event()
        self._connections: dict[threading.Thread, str] = {}
        self._drain_reason: Optional[str] = None
        self._drain_started_ns: Optional[int] = None
        self._refused = 0

    def is_draining(self) -> bool:
        """True once draining started; the accept loop stops on it."""
        return self._draining.is_set()

    @property
    def drain_reason(self) -> Optional[str]:
        return self._drain_reason

    @property
    def refused_count(self) -> int:
        """Connections answered with 41 because the server was draining."""
        with self._lock:
            return self._refused

    def track_connection(self, thread: threading.Thread, client: str) -> None:
        with self._lock:
            self._connections[thread] = client

    def release_connection(self, thread: threading.Thread) -> None:
        with self._lock:
            self._connections.pop(thread, None)

    def active_clients(self) -> list[str]:
        """Addresses of the connections currently being served."""
        with self._lock:
            return sorted(self._connections.values())

    def active_connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def begin_draining(self, reason: str = "requested") -> bool:
        """Switch to draining; returns False if the server was already draining."""
        with self._lock:
            if self._draining.is_set():
                return False
            self._drain_reason = reason
            self._drain_started_ns = time.monotonic_ns()
            self._draining.set()
            in_flight = len(self._connections)
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown",
            extra={
                "event": "drain_started",
                "reason": reason,
                "remaining_workers": in_flight,
            },
        )
        return True

    def refuse_while_draining(self) -> GeminiResponse:
        """Count a refused connection and return the 41 response it gets."""
        with self._lock:
            self._refused += 1
        return draining_response()

    def wait_for_connections(self, timeout: float) -> bool:
        """Join in-flight connections; False if some outlived ``timeout``."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._connections = {
                    thread: client
                    for thread, client in self._connections.items()
                    if thread.is_alive()
                }
                threads = list(self._connections)
            if not threads:
                self._log_drain_complete()
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "drain_timeout",
                        "remaining_workers": len(threads),
                        "remaining_clients": ",".join(self.active_clients()),
                    },
                )
                return False
            for thread in threads:
                thread.join(timeout=min(JOIN_SLICE_SECONDS, remaining))
                if time.monotonic() >= deadline:
                    break

    def _log_drain_complete(self) -> None:
        duration_ms = None
        if self._drain_started_ns is not None:
            duration_ms = (time.monotonic_ns() - self._drain_started_ns) // 1_000_000
        LIFECYCLE_LOGGER.info(
            "All connections finished",
            extra={
                "event": "drain_complete",
                "refused_requests": self.refused_count,
                "duration_ms": duration_ms,
            },
        )
