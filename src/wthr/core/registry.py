"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

The registry is the ONLY mutable state shared between the two threads
of the server:

    ┌──────────────────────┐                    ┌──────────────────────┐
    │      EVENT LOOP      │                    │     BROADCASTER      │
    │    (main thread)     │                    │  (background thread) │
    │                      │   add(handle,...)  │                      │
    │  accept + resolve ───┼──────────┐         │                      │
    │                      │          ▼         │                      │
    │  hangup ─────────────┼─► ┌────────────┐ ◄─┼── snapshot()         │
    │           remove()   │   │  REGISTRY  │   │   (copy, then no     │
    │                      │   │ {fd: Conn} │   │    lock during I/O)  │
    └──────────────────────┘   └────────────┘   └──────────────────────┘

=============================================================================
WHY A DICT KEYED BY HANDLE?
=============================================================================

Keeping a poll list and a connection list side by side and matching them
by POSITION breaks the moment one of them is reordered:

    poll list:   [listener, fd5, fd7, fd9]
    conn list:   [conn5, conn7, conn9]          conn = conns[i - 1]

    remove fd5 by swapping in the last element:
    poll list:   [listener, fd9, fd7]
    conn list:   [conn9, conn7]                 still lines up... by luck

Keying everything by the file descriptor makes lookups independent of
order: removing one entry can never change which record another handle
maps to.

=============================================================================
LOCKING DISCIPLINE
=============================================================================

One threading.Lock guards the dict. Each method holds it only for the
dict operation or the list copy. No socket I/O and no logging happens
while it is held, so the Broadcaster's slow sends never stall accept().

Connection records are frozen dataclasses, so a snapshot can never see
a half-built or half-torn-down record.

=============================================================================
"""

import threading
from typing import Any, Dict, List, Optional, Tuple

from .connection import Connection
from ..errors import DuplicateHandleError


class ConnectionRegistry:
    """
    Thread-safe table of live connections, keyed by socket handle.

    Usage:
        registry = ConnectionRegistry()
        registry.add(sock.fileno(), "203.0.113.7", (34.75, 113.64), sock)

        for conn in registry.snapshot():   # no lock held here
            send_all(conn.sock, payload)

        registry.remove(sock.fileno())     # idempotent
    """

    def __init__(self):
        self._lock = threading.Lock()
        # dicts keep insertion order, so snapshots list clients in the
        # order they registered
        self._connections: Dict[int, Connection] = {}

    def add(
        self,
        handle: int,
        remote_address: str,
        location: Tuple[float, float],
        sock: Any = None,
    ) -> Connection:
        """
        Register a new connection.

        Raises:
            DuplicateHandleError: handle is already present. The existing
                                  record is left untouched.
        """
        conn = Connection(
            handle=handle,
            remote_address=remote_address,
            location=(float(location[0]), float(location[1])),
            sock=sock,
        )

        with self._lock:
            if handle in self._connections:
                existing = True
            else:
                self._connections[handle] = conn
                existing = False

        if existing:
            raise DuplicateHandleError(handle)
        return conn

    def remove(self, handle: int) -> Optional[Connection]:
        """
        Forget the connection for handle.

        Removing an absent handle is a no-op and returns None, so
        duplicate teardown attempts are harmless.
        """
        with self._lock:
            return self._connections.pop(handle, None)

    def snapshot(self) -> List[Connection]:
        """Return a point-in-time copy of all registered connections."""
        with self._lock:
            return list(self._connections.values())

    def get(self, handle: int) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(handle)

    def clear(self) -> List[Connection]:
        """Remove every connection and return what was removed."""
        with self._lock:
            removed = list(self._connections.values())
            self._connections.clear()
        return removed

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
