"""
Unit tests for the periodic broadcaster.
"""

import socket
import time

import pytest

from wthr.core.broadcaster import Broadcaster, next_boundary
from wthr.core.registry import ConnectionRegistry
from wthr.errors import ContentUnavailable
from wthr.services.forecast import ContentProvider


class RecordingSocket:
    """Fake socket capturing everything sent to it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.received = b""

    def send(self, data) -> int:
        if self.fail:
            raise BrokenPipeError("peer gone")
        self.received += bytes(data)
        return len(data)


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


class TestNextBoundary:

    @pytest.mark.parametrize("now,interval,expected", [
        (0.0, 60.0, 60.0),
        (59.9, 60.0, 60.0),
        (60.0, 60.0, 120.0),
        (1_700_000_123.0, 86400.0, 1_700_006_400.0),
    ])
    def test_aligned_to_epoch(self, now, interval, expected):
        assert next_boundary(now, interval) == pytest.approx(expected)

    def test_same_boundary_regardless_of_start(self):
        """Two processes started at different times wake together."""
        assert next_boundary(1000.0, 300.0) == next_boundary(1150.0, 300.0)


class TestRunCycle:

    def test_delivers_to_every_connection(self, registry, make_provider):
        sockets = [RecordingSocket() for _ in range(3)]
        for i, sock in enumerate(sockets):
            registry.add(10 + i, f"10.0.0.{i}", (float(i), float(i)), sock)

        provider = make_provider(text="Forecast for Monday:\n00:00: ok\n")
        report = Broadcaster(registry, provider, interval=60).run_cycle()

        assert report.recipients == 3
        assert report.delivered == 3
        assert provider.calls == [(0.0, 0.0), (1.0, 1.0), (2.0, 2.0)]
        for sock in sockets:
            assert sock.received == b"Forecast for Monday:\n00:00: ok\n"

    def test_content_failure_skips_only_that_recipient(self, registry, make_provider):
        good, bad = RecordingSocket(), RecordingSocket()
        registry.add(1, "bad", (9.0, 9.0), bad)
        registry.add(2, "good", (1.0, 1.0), good)

        provider = make_provider(text="hi\n", fail_for=[(9.0, 9.0)])
        report = Broadcaster(registry, provider, interval=60).run_cycle()

        assert report.skipped == 1
        assert report.delivered == 1
        assert bad.received == b""
        assert good.received == b"hi\n"

    def test_send_failure_continues_and_keeps_registration(self, registry, make_provider):
        broken, healthy = RecordingSocket(fail=True), RecordingSocket()
        registry.add(1, "broken", (0.0, 0.0), broken)
        registry.add(2, "healthy", (0.0, 0.0), healthy)

        report = Broadcaster(registry, make_provider(text="x\n"), interval=60).run_cycle()

        assert report.failed == 1
        assert report.delivered == 1
        assert healthy.received == b"x\n"
        # Removal is the Event Loop's job
        assert 1 in registry

    def test_send_to_closed_socket_is_ordinary_failure(self, registry, make_provider):
        a, b = socket.socketpair()
        a.close()
        b.close()
        registry.add(1, "gone", (0.0, 0.0), a)

        report = Broadcaster(registry, make_provider(), interval=60).run_cycle()

        assert report.failed == 1

    def test_unexpected_provider_error_is_contained(self, registry):
        class Exploding(ContentProvider):
            def generate(self, latitude, longitude):
                raise RuntimeError("boom")

        registry.add(1, "a", (0.0, 0.0), RecordingSocket())
        report = Broadcaster(registry, Exploding(), interval=60).run_cycle()

        assert report.skipped == 1

    def test_recipients_fixed_at_snapshot(self, registry):
        """Connections registered mid-cycle wait for the next one."""
        late = RecordingSocket()

        class RegisteringProvider(ContentProvider):
            def generate(self, latitude, longitude):
                if 99 not in registry:
                    registry.add(99, "late", (5.0, 5.0), late)
                return "payload\n"

        registry.add(1, "early", (0.0, 0.0), RecordingSocket())
        broadcaster = Broadcaster(registry, RegisteringProvider(), interval=60)

        report = broadcaster.run_cycle()
        assert report.recipients == 1
        assert late.received == b""

        broadcaster.run_cycle()
        assert late.received == b"payload\n"

    def test_stop_between_recipients(self, registry, make_provider):
        sockets = [RecordingSocket() for _ in range(3)]
        for i, sock in enumerate(sockets):
            registry.add(i, str(i), (0.0, 0.0), sock)

        broadcaster = Broadcaster(registry, make_provider(), interval=60)

        class StoppingProvider(ContentProvider):
            def generate(self, latitude, longitude):
                broadcaster.stop()
                return "only one\n"

        broadcaster.provider = StoppingProvider()
        report = broadcaster.run_cycle()

        assert report.interrupted
        assert report.delivered == 1
        assert [s.received for s in sockets] == [b"only one\n", b"", b""]

    def test_empty_registry(self, registry, make_provider):
        report = Broadcaster(registry, make_provider(), interval=60).run_cycle()
        assert report.recipients == 0
        assert report.delivered == 0


class TestThread:

    def test_stop_interrupts_wait_immediately(self, registry, make_provider):
        broadcaster = Broadcaster(registry, make_provider(), interval=86400)
        broadcaster.start()

        started = time.monotonic()
        broadcaster.stop()
        broadcaster.join(timeout=5.0)

        assert not broadcaster.is_alive()
        assert time.monotonic() - started < 2.0
        assert broadcaster.cycles_completed == 0

    def test_cycle_runs_on_boundary(self, registry, make_provider):
        sock = RecordingSocket()
        registry.add(1, "a", (0.0, 0.0), sock)

        # Clock sitting just before a boundary: the first wait is ~50ms
        base = 3600 * 300.0
        offset = time.monotonic()
        clock = lambda: base - 0.05 + (time.monotonic() - offset)

        broadcaster = Broadcaster(registry, make_provider(text="tick\n"), interval=3600, clock=clock)
        broadcaster.start()

        deadline = time.monotonic() + 5.0
        while broadcaster.cycles_completed == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        broadcaster.stop()
        broadcaster.join(timeout=5.0)

        assert broadcaster.cycles_completed == 1
        assert sock.received == b"tick\n"

    def test_run_immediately(self, registry, make_provider):
        sock = RecordingSocket()
        registry.add(1, "a", (0.0, 0.0), sock)

        broadcaster = Broadcaster(registry, make_provider(text="now\n"), interval=86400,
                                  run_immediately=True)
        broadcaster.start()

        deadline = time.monotonic() + 5.0
        while broadcaster.cycles_completed == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        broadcaster.stop()
        broadcaster.join(timeout=5.0)

        assert sock.received == b"now\n"

    def test_rejects_bad_interval(self, registry, make_provider):
        with pytest.raises(ValueError):
            Broadcaster(registry, make_provider(), interval=0)
