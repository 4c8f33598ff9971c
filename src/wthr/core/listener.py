"""
=============================================================================
LISTENING SOCKET
=============================================================================

Creates the one socket that never carries forecast data: the listener
the Event Loop accepts clients from.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. getaddrinfo()  Turn (host, port/service) into candidate addresses
                      └─ host=None + AI_PASSIVE = "every local interface"
                      └─ AF_UNSPEC = IPv4 or IPv6, whichever comes first

    2. socket()       Create a socket for the candidate's family

    3. setsockopt()   SO_REUSEADDR so restarts don't hit TIME_WAIT

    4. bind()         Try the next candidate if this one fails

    5. listen()       Start queueing incoming connections

Any failure here is FATAL. No client exists yet, so there is nothing to
clean up besides the socket itself; StartupError carries the reason up
to main(), which exits with status 1.

=============================================================================
"""

import socket
import logging
from typing import Optional

from ..errors import StartupError


logger = logging.getLogger(__name__)


def _create_socket(family: int, socktype: int, proto: int) -> socket.socket:
    """Create and configure one candidate server socket."""
    sock = socket.socket(family, socktype, proto)

    # SO_REUSEADDR: Allow reuse of local addresses
    # Avoids "Address already in use" when the server restarts
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

    # Accept IPv4 clients on an IPv6 wildcard socket as well
    if family == socket.AF_INET6 and hasattr(socket, "IPV6_V6ONLY"):
        try:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        except OSError:
            pass  # Platform forces v6-only

    return sock


def open_listener(host: Optional[str], port: str, backlog: int) -> socket.socket:
    """
    Resolve, bind and listen.

    Args:
        host: Bind address, or None for every local interface.
        port: Port number or service name.
        backlog: listen() queue size.

    Returns:
        A listening, non-blocking socket.

    Raises:
        StartupError: If no candidate address can be bound or listen()
                      fails.
    """
    try:
        candidates = socket.getaddrinfo(
            host, str(port), socket.AF_UNSPEC, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
        )
    except socket.gaierror as e:
        raise StartupError(f"getaddrinfo({host!r}, {port!r}) failed: {e}") from e

    sock = None
    last_error: Optional[OSError] = None

    for family, socktype, proto, _, sockaddr in candidates:
        try:
            sock = _create_socket(family, socktype, proto)
        except OSError as e:
            logger.warning(f"socket() failed for {sockaddr}: {e}")
            last_error = e
            continue

        try:
            sock.bind(sockaddr)
        except OSError as e:
            logger.warning(f"bind() failed for {sockaddr}: {e}")
            last_error = e
            sock.close()
            sock = None
            continue

        # If all successful, no more candidates needed
        break

    if sock is None:
        raise StartupError(f"server failed to bind to port {port}: {last_error}")

    try:
        sock.listen(backlog)
    except OSError as e:
        sock.close()
        raise StartupError(f"listen() failed: {e}") from e

    # The Event Loop only accepts after select() reports readiness
    sock.setblocking(False)

    bound = sock.getsockname()
    logger.info(f"Server listening on {bound[0]}:{bound[1]}")
    return sock
