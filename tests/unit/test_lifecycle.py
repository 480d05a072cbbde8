"""Unit tests for the server drain state."""

import logging
import threading
import time

from gemini.domain.status import STATUS_UNAVAILABLE
from gemini.lifecycle.state import ServerLifecycle


def _records(caplog, event):
    return [r for r in caplog.records if getattr(r, "event", None) == event]


class TestServerLifecycle:
    def test_initial_state(self):
        lifecycle = ServerLifecycle()
        assert not lifecycle.is_draining()
        assert lifecycle.drain_reason is None
        assert lifecycle.refused_count == 0

    def test_begin_draining_only_once(self, caplog):
        lifecycle = ServerLifecycle()

        with caplog.at_level(logging.INFO, logger="gemini"):
            assert lifecycle.begin_draining("SIGTERM")
            assert not lifecycle.begin_draining("SIGINT")

        assert lifecycle.is_draining()
        assert lifecycle.drain_reason == "SIGTERM"
        started = _records(caplog, "drain_started")
        assert len(started) == 1
        assert started[0].reason == "SIGTERM"

    def test_connection_tracking(self):
        lifecycle = ServerLifecycle()
        first = threading.Thread(target=lambda: None)
        second = threading.Thread(target=lambda: None)

        lifecycle.track_connection(first, "10.0.0.2:4000")
        lifecycle.track_connection(second, "10.0.0.1:5000")
        assert lifecycle.active_connection_count() == 2
        assert lifecycle.active_clients() == ["10.0.0.1:5000", "10.0.0.2:4000"]

        lifecycle.release_connection(first)
        lifecycle.release_connection(first)
        assert lifecycle.active_clients() == ["10.0.0.1:5000"]

    def test_refusals_are_counted(self):
        lifecycle = ServerLifecycle()
        lifecycle.begin_draining()

        first = lifecycle.refuse_while_draining()
        lifecycle.refuse_while_draining()

        assert first.status == STATUS_UNAVAILABLE
        assert lifecycle.refused_count == 2

    def test_wait_returns_when_connections_finish(self, caplog):
        lifecycle = ServerLifecycle()
        thread = threading.Thread(target=time.sleep, args=(0.05,))
        lifecycle.track_connection(thread, "127.0.0.1:50000")
        thread.start()
        lifecycle.begin_draining()
        lifecycle.refuse_while_draining()

        with caplog.at_level(logging.INFO, logger="gemini"):
            assert lifecycle.wait_for_connections(timeout=2.0)

        assert lifecycle.active_connection_count() == 0
        complete = _records(caplog, "drain_complete")
        assert complete[0].refused_requests == 1
        assert complete[0].duration_ms >= 0

    def test_wait_times_out_naming_remaining_clients(self, caplog):
        lifecycle = ServerLifecycle()
        release = threading.Event()
        thread = threading.Thread(target=release.wait)
        lifecycle.track_connection(thread, "127.0.0.1:50001")
        thread.start()
        try:
            with caplog.at_level(logging.WARNING, logger="gemini"):
                assert not lifecycle.wait_for_connections(timeout=0.2)
        finally:
            release.set()
            thread.join()

        timeout = _records(caplog, "drain_timeout")
        assert timeout[0].remaining_workers == 1
        assert timeout[0].remaining_clients == "127.0.0.1:50001"
