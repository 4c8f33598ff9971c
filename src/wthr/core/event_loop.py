"""
=============================================================================
EVENT LOOP
=============================================================================

One thread watches EVERY socket the server owns, using the OS readiness
API (epoll/kqueue/poll via the selectors module). No thread per client,
no matter how many clients connect.

=============================================================================
WHAT THE LOOP WATCHES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      selector (keyed by fd)                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   listener  (LISTENING)  readable → a client is waiting in accept() │
    │             (unwatched for ACCEPT_BACKOFF after accept() fails)    │
    │   wake pipe              readable → stop() was called               │
    │   client fd (OPEN)       readable → peer hung up (recv() == b"")    │
    │   client fd (OPEN)       ...                                        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Clients never send anything in this protocol, so "readable" on a client
socket almost always means the peer closed its end. Any stray bytes a
client does send are read and thrown away.

=============================================================================
PER-SOCKET STATE MACHINE
=============================================================================

    LISTENING ──accept()──► resolve location
                               │
                               ├── found ──► registry.add() ──► OPEN
                               │
                               └── not found ──► one notice line
                                                  └──► close() (never OPEN)

    OPEN ──hangup / error──► unregister ──► registry.remove() ──► close()
                                                                   │
                                                                CLOSED

The Event Loop is the ONLY code that closes client sockets and the ONLY
writer of registry membership. The Broadcaster may be in the middle of a
send() when a socket closes here; it sees an ordinary OSError.

=============================================================================
"""

import time
import socket
import selectors
import logging
import threading
from typing import List, Optional

from .connection import SocketState, close_quietly, format_address
from .registry import ConnectionRegistry
from ..errors import DuplicateHandleError, LocationNotFound
from ..services.geolocation import LocationResolver


logger = logging.getLogger(__name__)


# Sent to a client whose address has no known location, right before close()
LOCATION_FAILURE_NOTICE = b"Couldn't retrieve geolocation data\n"

# Marker stored in the selector for the wake-up socket
_WAKEUP = "wakeup"

# Seconds the listener is left unwatched after accept() fails. A
# persistent failure (EMFILE) keeps the listener readable, and a
# level-triggered select() would otherwise spin on it.
ACCEPT_BACKOFF = 0.5


class EventLoop:
    """
    Single-threaded accept/hangup loop.

    Usage:
        loop = EventLoop(listener, registry, resolver, send_timeout=10.0)

        # main thread                      # any other thread / signal
        loop.run()   ◄── blocks ─────────  loop.stop()
        ...
        broadcaster.join()
        loop.close_all()
    """

    def __init__(
        self,
        listener: socket.socket,
        registry: ConnectionRegistry,
        resolver: LocationResolver,
        send_timeout: Optional[float] = None,
    ):
        """
        Args:
            listener: Bound, listening socket (see open_listener()).
            registry: Shared connection registry.
            resolver: Maps client addresses to coordinates.
            send_timeout: Timeout applied to every accepted client so
                          Broadcaster writes cannot block forever.
        """
        self.listener = listener
        self.registry = registry
        self.resolver = resolver
        self.send_timeout = send_timeout

        self._selector = selectors.DefaultSelector()
        self._stopping = threading.Event()
        self._running = False
        self._resume_accepting_at: Optional[float] = None

        # ─────────────────────────────────────────────────────────────────
        # WAKE-UP PAIR
        # ─────────────────────────────────────────────────────────────────
        # select() without a timeout sleeps until a socket is ready.
        # stop() writes one byte here so the wait returns at once instead
        # of waiting for the next client to connect or leave.
        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self._wake_w.setblocking(False)

        self._selector.register(self.listener, selectors.EVENT_READ, SocketState.LISTENING)
        self._selector.register(self._wake_r, selectors.EVENT_READ, _WAKEUP)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self):
        """The listener's bound address (host, port, ...)."""
        return self.listener.getsockname()

    def watched_handles(self) -> List[int]:
        """Handles of OPEN client sockets currently in the watch set."""
        mapping = self._selector.get_map()
        if mapping is None:
            return []  # Selector already closed
        return [key.fd for key in list(mapping.values()) if key.data is SocketState.OPEN]

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    def run(self) -> None:
        """Dispatch readiness events until stop() is called."""
        self._running = True
        logger.info("Server is waiting for connections")

        try:
            while not self._stopping.is_set():
                self._resume_accepting()
                try:
                    events = self._selector.select(self._select_timeout())
                except InterruptedError:
                    continue

                for key, _ in events:
                    if self._stopping.is_set():
                        break

                    # Stale if an earlier event in this batch closed it
                    if self._selector.get_map().get(key.fd) is not key:
                        continue

                    if key.data is SocketState.LISTENING:
                        self._accept()
                    elif key.data is SocketState.OPEN:
                        self._service_client(key.fileobj)
                    elif key.data == _WAKEUP:
                        self._drain_wakeup()
        finally:
            self._running = False
            logger.info("Event loop stopped")

    def stop(self) -> None:
        """
        Ask the loop to exit after its current readiness wait.

        Safe to call from any thread or from a signal handler, and safe
        to call more than once.
        """
        self._stopping.set()
        try:
            self._wake_w.send(b"\0")
        except OSError:
            pass  # Pipe full or already closed - the flag is what matters

    def _drain_wakeup(self) -> None:
        try:
            while self._wake_r.recv(64):
                pass
        except (BlockingIOError, OSError):
            pass

    # =========================================================================
    # LISTENING → OPEN
    # =========================================================================

    def _accept(self) -> None:
        """Accept one client, locate it and register it."""
        try:
            client, addr = self.listener.accept()
        except BlockingIOError:
            return  # Another wake-up raced us to it
        except OSError as e:
            logger.error(f"accept() failed, pausing for {ACCEPT_BACKOFF}s: {e}")
            self._pause_accepting()
            return

        remote_address = format_address(addr)
        client.settimeout(self.send_timeout)

        # ─────────────────────────────────────────────────────────────────
        # RESOLVE LOCATION
        # ─────────────────────────────────────────────────────────────────
        # Runs on this thread; the resolver bounds its own network time.
        try:
            location = self.resolver.resolve(remote_address)
        except LocationNotFound as e:
            logger.warning(f"Couldn't retrieve geolocation of new client {remote_address}: {e.reason}")
            self._reject(client)
            return
        except Exception as e:
            logger.exception(f"Location resolver crashed for {remote_address}: {e}")
            self._reject(client)
            return

        # ─────────────────────────────────────────────────────────────────
        # WATCH, THEN REGISTER
        # ─────────────────────────────────────────────────────────────────
        # Every registered handle is always in the watch set: it joins the
        # selector before the registry and leaves the selector first.
        handle = client.fileno()
        try:
            self._selector.register(client, selectors.EVENT_READ, SocketState.OPEN)
        except (KeyError, ValueError) as e:
            logger.error(f"Could not watch {remote_address}: {e}")
            close_quietly(client)
            return

        try:
            self.registry.add(handle, remote_address, location, client)
        except DuplicateHandleError as e:
            logger.error(f"Refusing {remote_address}: {e}")
            self._selector.unregister(client)
            close_quietly(client)
            return

        logger.info(f"Started connection with {remote_address}")

    def _pause_accepting(self) -> None:
        try:
            self._selector.unregister(self.listener)
        except (KeyError, ValueError):
            pass
        self._resume_accepting_at = time.monotonic() + ACCEPT_BACKOFF

    def _resume_accepting(self) -> None:
        if self._resume_accepting_at is None or time.monotonic() < self._resume_accepting_at:
            return
        self._resume_accepting_at = None
        self._selector.register(self.listener, selectors.EVENT_READ, SocketState.LISTENING)

    def _select_timeout(self) -> Optional[float]:
        """None (block) unless accepting is paused."""
        if self._resume_accepting_at is None:
            return None
        return max(self._resume_accepting_at - time.monotonic(), 0.0)

    def _reject(self, client: socket.socket) -> None:
        """Tell the client why, then hang up. Send errors are ignored."""
        try:
            client.sendall(LOCATION_FAILURE_NOTICE)
        except OSError as e:
            logger.debug(f"Failure notice not delivered: {e}")
        close_quietly(client)

    # =========================================================================
    # OPEN → CLOSED
    # =========================================================================

    def _service_client(self, client: socket.socket) -> None:
        """Handle readiness on a client socket: hangup, error or junk."""
        try:
            data = client.recv(1024)
        except (BlockingIOError, socket.timeout):
            return
        except OSError as e:
            logger.debug(f"recv() failed on fd {client.fileno()}: {e}")
            data = b""

        if data:
            logger.debug(f"Discarding {len(data)} unexpected bytes from fd {client.fileno()}")
            return

        self._close_client(client)

    def _close_client(self, client: socket.socket) -> None:
        handle = client.fileno()

        try:
            self._selector.unregister(client)
        except (KeyError, ValueError):
            pass  # Never registered or already gone

        conn = self.registry.remove(handle)
        close_quietly(client)

        remote = conn.remote_address if conn else f"fd {handle}"
        logger.info(f"Closed connection with {remote}")

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def close_all(self) -> None:
        """
        Close every client socket, the listener and the selector.

        Must only be called after the Broadcaster has exited, otherwise
        it could still be writing to the sockets closed here.
        """
        for conn in self.registry.clear():
            try:
                self._selector.unregister(conn.sock)
            except (KeyError, ValueError):
                pass
            close_quietly(conn.sock)

        for key in list(self._selector.get_map().values()):
            self._selector.unregister(key.fileobj)
            close_quietly(key.fileobj)

        close_quietly(self.listener)  # Unwatched while accepting is paused
        close_quietly(self._wake_w)
        self._selector.close()
        logger.info("All sockets closed")
