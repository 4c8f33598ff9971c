"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

Two threads share one table:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           EVENT LOOP                                 │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Owns the listening socket and every client socket                │
    │  • Accepts, locates and registers clients                           │
    │  • Notices hangups, unregisters and closes                          │
    │  • The only writer of registry membership                           │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ add() / remove()
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                      CONNECTION REGISTRY                             │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • {handle: Connection}, one lock, no I/O under the lock            │
    └─────────────────────────────────────────────────────────────────────┘
                                    ▲ snapshot()
                                    │
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          BROADCASTER                                 │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Wakes on epoch-aligned period boundaries                         │
    │  • Generates and sends content to each snapshot entry in turn       │
    │  • Never closes sockets, never removes registry entries             │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, SocketState, send_all
from .registry import ConnectionRegistry
from .listener import open_listener
from .event_loop import EventLoop
from .broadcaster import Broadcaster, CycleReport, next_boundary

__all__ = [
    "Connection",          # Immutable record of one registered client
    "SocketState",         # LISTENING / OPEN / CLOSED
    "send_all",            # Partial-write loop with exact byte accounting
    "ConnectionRegistry",  # Thread-safe handle-keyed table
    "open_listener",       # Resolve + bind + listen
    "EventLoop",           # Accept/hangup loop
    "Broadcaster",         # Periodic push thread
    "CycleReport",
    "next_boundary",
]
