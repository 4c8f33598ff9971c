"""
=============================================================================
CONNECTION RECORD AND SEND ROUTINE
=============================================================================

A Connection is the registry's view of one accepted, located client.
It is deliberately IMMUTABLE: the Broadcaster reads these records
without holding any lock, so nothing about them may change after they
are created.

=============================================================================
send() IS NOT "SEND EVERYTHING"!
=============================================================================

socket.send() returns how many bytes the kernel accepted, and that can be
fewer than you asked for when the send buffer is nearly full:

    payload = 1500 bytes
        send(payload)        → 1024   (kernel buffer full)
        send(payload[1024:]) → 476    (the rest)

socket.sendall() hides this loop but, on failure, does not tell you how
much actually went out. send_all() below keeps the loop explicit so a
failed delivery can report exactly how many bytes reached the peer:

    ┌─────────────────────────────────────────────────────────────────┐
    │   total = 0                                                      │
    │   while total < len(data):                                       │
    │       n = sock.send(data[total:])   ── OSError → SendError(total)│
    │       total += n                                                 │
    │   return total                                                   │
    └─────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import socket
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple

from ..errors import SendError


logger = logging.getLogger(__name__)


class SocketState(Enum):
    """
    Lifecycle of every socket the Event Loop watches.

        LISTENING ──accept──► OPEN ──hangup/error──► CLOSED

    Only the server socket is ever LISTENING. A client whose location
    cannot be resolved goes straight to CLOSED without being OPEN.
    """
    LISTENING = "listening"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class Connection:
    """
    One registered client.

    handle is the socket's file descriptor and the registry key.
    sock is carried so the Broadcaster can write to it; it is excluded
    from equality because two records are the same client when their
    handle, address and location agree.
    """

    handle: int
    remote_address: str
    location: Tuple[float, float]
    sock: Any = field(default=None, compare=False, repr=False)
    connected_at: float = field(default_factory=time.time, compare=False)

    @property
    def latitude(self) -> float:
        return self.location[0]

    @property
    def longitude(self) -> float:
        return self.location[1]


def send_all(sock: Any, data: bytes) -> int:
    """
    Write all of data to sock, looping on partial writes.

    Args:
        sock: Anything with a socket-like send(bytes) -> int method.
        data: Bytes to deliver.

    Returns:
        Number of bytes sent (always len(data) on success).

    Raises:
        SendError: When send() fails or makes no progress. bytes_sent
                   holds the exact count delivered before the failure.
    """
    total = 0
    view = memoryview(data)

    while total < len(data):
        try:
            sent = sock.send(view[total:])
        except OSError as e:
            # Includes socket.timeout and EBADF after a concurrent close
            raise SendError(total, len(data), e) from e

        if sent <= 0:
            raise SendError(total, len(data), ConnectionError("peer stopped accepting data"))

        total += sent

    return total


def format_address(address: Any) -> str:
    """
    Turn an accept() address into the text used for logs and lookups.

    IPv4 clients reaching a dual-stack IPv6 listener show up as
    "::ffff:1.2.3.4"; the geolocation service wants the plain IPv4 form.
    """
    host = address[0] if isinstance(address, tuple) else str(address)
    if host.startswith("::ffff:") and "." in host:
        host = host[len("::ffff:"):]
    return host


def close_quietly(sock: Optional[socket.socket]) -> None:
    """Close a socket, ignoring errors from an already-dead peer."""
    if sock is None:
        return
    try:
        sock.close()
    except OSError as e:
        logger.debug(f"Ignoring close() error: {e}")
