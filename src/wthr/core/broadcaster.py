"""
=============================================================================
PERIODIC BROADCASTER
=============================================================================

A background thread that wakes up on a fixed wall-clock schedule and
pushes a freshly generated forecast to every registered client.

=============================================================================
SCHEDULE: ALIGNED TO THE EPOCH
=============================================================================

With interval = 86400 (one day) the broadcaster wakes at every UTC
midnight, no matter when the process started:

    time ──┬───────────────┬───────────────┬───────────────┬──►
           0            86400          172800          259200
                  ▲        ▲
             started here  first cycle

    next_boundary(now) = (floor(now / interval) + 1) * interval

A restart in the middle of the day keeps the same wake-up times.

=============================================================================
ONE CYCLE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   wait(until boundary)  ◄── stop() wakes this immediately           │
    │        │                                                             │
    │        ▼                                                             │
    │   recipients = registry.snapshot()     (lock held only for copy)    │
    │        │                                                             │
    │        ▼                                                             │
    │   for conn in recipients:                                           │
    │        ├── stopping?  → return                                      │
    │        ├── provider.generate(lat, lon)  ── fails → log, skip        │
    │        └── send_all(conn.sock, payload) ── fails → log, next        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Clients that connect after the snapshot wait for the next cycle. Clients
that leave mid-cycle simply fail their send. The broadcaster NEVER
removes anything from the registry and never closes a socket; that is
the Event Loop's job.

=============================================================================
"""

import math
import time
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .connection import Connection, send_all
from .registry import ConnectionRegistry
from ..errors import ContentUnavailable, SendError
from ..services.forecast import ContentProvider


logger = logging.getLogger(__name__)


def next_boundary(now: float, interval: float) -> float:
    """First multiple of interval (counted from the epoch) after now."""
    return (math.floor(now / interval) + 1) * interval


class Delivery(Enum):
    """What happened to one recipient in one cycle."""
    DELIVERED = "delivered"
    SKIPPED = "skipped"     # No content this cycle
    FAILED = "failed"       # Content produced, send failed


@dataclass
class CycleReport:
    """Outcome of one broadcast cycle."""

    recipients: int = 0
    delivered: int = 0
    skipped: int = 0
    failed: int = 0
    interrupted: bool = False


class Broadcaster(threading.Thread):
    """
    Background thread pushing content to every registered connection.

    Usage:
        broadcaster = Broadcaster(registry, provider, interval=86400)
        broadcaster.start()
        ...
        broadcaster.stop()
        broadcaster.join()
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        provider: ContentProvider,
        interval: float,
        run_immediately: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            registry: Shared connection registry (read-only use).
            provider: Produces the payload text for a location.
            interval: Period in seconds between cycles.
            run_immediately: Run one cycle before the first wait.
            clock: Wall-clock source, replaceable in tests.
        """
        # daemon=True: a stuck send can never keep the process alive
        super().__init__(name="Broadcaster", daemon=True)

        if interval <= 0:
            raise ValueError("interval must be > 0")

        self.registry = registry
        self.provider = provider
        self.interval = interval
        self.run_immediately = run_immediately
        self._clock = clock

        self._stop_event = threading.Event()

        # Metrics
        self.cycles_completed = 0
        self.last_report: Optional[CycleReport] = None

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Signal the thread to exit; interrupts the period wait at once."""
        self._stop_event.set()

    def run(self) -> None:
        logger.debug(f"Broadcaster started, interval {self.interval}s")

        if self.run_immediately and not self.stopping:
            self._run_cycle_safely()

        target = 0.0
        while not self.stopping:
            # ─────────────────────────────────────────────────────────────
            # WAIT FOR NEXT BOUNDARY
            # ─────────────────────────────────────────────────────────────
            # Event.wait() returns True as soon as stop() is called, so
            # shutdown never waits out the rest of the period.
            now = self._clock()
            # max() guards against a wait that returned a hair early,
            # which would otherwise fire the same boundary twice
            target = max(next_boundary(now, self.interval), target + self.interval)
            if self._stop_event.wait(max(target - now, 0.0)):
                break

            self._run_cycle_safely()

        logger.debug("Broadcaster stopped")

    def _run_cycle_safely(self) -> None:
        try:
            self.run_cycle()
        except Exception as e:
            # Keep the schedule alive whatever a single cycle does
            logger.exception(f"Broadcast cycle failed: {e}")

    def run_cycle(self) -> CycleReport:
        """Push one round of content to a snapshot of the registry."""
        recipients = self.registry.snapshot()
        report = CycleReport(recipients=len(recipients))
        started = time.time()

        logger.info(f"Broadcasting to {len(recipients)} connection(s)")

        for conn in recipients:
            # Checked between recipients so shutdown isn't held up by
            # the rest of the list
            if self.stopping:
                report.interrupted = True
                break

            outcome = self._deliver(conn)
            if outcome is Delivery.DELIVERED:
                report.delivered += 1
            elif outcome is Delivery.SKIPPED:
                report.skipped += 1
            else:
                report.failed += 1

        elapsed = time.time() - started
        logger.info(
            f"Broadcast cycle done in {elapsed:.3f}s: {report.delivered} delivered, "
            f"{report.skipped} skipped, {report.failed} failed"
        )

        self.cycles_completed += 1
        self.last_report = report
        return report

    def _deliver(self, conn: Connection) -> Delivery:
        """Generate and send one payload."""
        try:
            payload = self.provider.generate(conn.latitude, conn.longitude)
        except ContentUnavailable as e:
            logger.warning(f"No content for {conn.remote_address}, skipping this cycle: {e}")
            return Delivery.SKIPPED
        except Exception as e:
            logger.exception(f"Content provider crashed for {conn.remote_address}: {e}")
            return Delivery.SKIPPED

        data = payload.encode("utf-8")
        try:
            send_all(conn.sock, data)
        except SendError as e:
            logger.warning(
                f"Send to {conn.remote_address} failed after {e.bytes_sent}/{e.total} bytes: {e.cause}"
            )
            return Delivery.FAILED

        logger.debug(f"Sent {len(data)} bytes to {conn.remote_address}")
        return Delivery.DELIVERED
