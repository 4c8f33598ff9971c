"""
=============================================================================
FORECAST SERVER (BOOTSTRAP)
=============================================================================

Wires the pieces together and owns startup and shutdown ordering.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          WeatherServer                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   run()                                                              │
    │     ├──► _setup_logging()                                           │
    │     ├──► start()                                                     │
    │     │      ├──► open_listener()     FATAL on failure (StartupError) │
    │     │      ├──► EventLoop(...)                                      │
    │     │      └──► Broadcaster.start() background thread               │
    │     │                                                                │
    │     └──► serve()                                                     │
    │            ├──► _setup_signals()    SIGINT/SIGTERM → shutdown()     │
    │            ├──► event_loop.run()    BLOCKS HERE                     │
    │            └──► _shutdown()                                          │
    │                   ├──► broadcaster.stop()                            │
    │                   ├──► broadcaster.join()   wait for it to exit     │
    │                   └──► event_loop.close_all()                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHY JOIN BEFORE CLOSING SOCKETS?
=============================================================================

The Broadcaster writes to client sockets without owning them. If the
sockets were closed first, a cycle still in progress would keep sending
into sockets that are being torn down. Joining first means nobody is
writing by the time anything is closed.

=============================================================================
"""

import signal
import logging
import threading
from typing import Optional

from .config import ServerConfig
from .core.broadcaster import Broadcaster
from .core.event_loop import EventLoop
from .core.listener import open_listener
from .core.registry import ConnectionRegistry
from .services.forecast import ContentProvider, OpenMeteoProvider
from .services.geolocation import IPInfoResolver, LocationResolver


logger = logging.getLogger(__name__)


class WeatherServer:
    """
    Push-style forecast server.

    Usage:
        server = WeatherServer(ServerConfig(port="7000"))
        server.run()  # Blocks until SIGINT/SIGTERM or shutdown()

    Collaborators can be swapped, which is how the tests run without
    network access:

        server = WeatherServer(config, resolver=StaticResolver({...}),
                               provider=FakeProvider())
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        resolver: Optional[LocationResolver] = None,
        provider: Optional[ContentProvider] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()

        self.registry = ConnectionRegistry()
        self.resolver = resolver or IPInfoResolver(
            base_url=self.config.ipinfo_url,
            token=self.config.ipinfo_token,
            timeout=self.config.http_timeout,
        )
        self.provider = provider or OpenMeteoProvider(
            url=self.config.forecast_url,
            timeout=self.config.http_timeout,
            hours=self.config.hours,
        )

        self.event_loop: Optional[EventLoop] = None
        self.broadcaster: Optional[Broadcaster] = None

        self._ready = threading.Event()
        self._original_handlers: dict = {}

    @property
    def address(self):
        """Bound (host, port, ...) of the listener; None before start()."""
        return self.event_loop.address if self.event_loop else None

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener is accepting. Returns False on timeout."""
        return self._ready.wait(timeout)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self) -> None:
        """Start the server and serve until shut down (blocking)."""
        self._setup_logging()
        self.start()
        self.serve()

    def start(self) -> None:
        """
        Bind the listener and start the Broadcaster.

        Raises:
            StartupError: The listening socket could not be set up.
        """
        listener = open_listener(self.config.host, self.config.port, self.config.backlog)

        self.event_loop = EventLoop(
            listener,
            self.registry,
            self.resolver,
            send_timeout=self.config.send_timeout,
        )
        self.broadcaster = Broadcaster(
            self.registry,
            self.provider,
            interval=self.config.interval,
            run_immediately=self.config.broadcast_on_start,
        )
        self.broadcaster.start()
        self._ready.set()

    def serve(self) -> None:
        """Run the Event Loop on this thread, then shut down in order."""
        if self.event_loop is None:
            raise RuntimeError("start() must be called before serve()")

        self._setup_signals()
        try:
            self.event_loop.run()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def shutdown(self) -> None:
        """
        Request a graceful stop.

        Safe to call from any thread and from signal handlers. serve()
        returns once the ordered teardown has finished.
        """
        if self.event_loop is not None:
            self.event_loop.stop()

    def _shutdown(self) -> None:
        logger.info("Shutting down server...")

        if self.broadcaster is not None:
            self.broadcaster.stop()
            self.broadcaster.join()

        self.event_loop.close_all()
        self._restore_signals()
        self._ready.clear()

        logger.info("Server stopped")

    # =========================================================================
    # PROCESS WIRING
    # =========================================================================

    def _setup_logging(self) -> None:
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("wthr").setLevel(level)

        # requests/urllib3 log every connection at DEBUG
        logging.getLogger("urllib3").setLevel(max(level, logging.INFO))

    def _setup_signals(self) -> None:
        """
        Route SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd) to
        shutdown(). Signal handlers can only be installed from the main
        thread, so servers running in a helper thread (tests) skip this.
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()
