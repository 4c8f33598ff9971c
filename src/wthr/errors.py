"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure the server can run into falls into one of three buckets:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ERROR CATEGORIES                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   FATAL (process exits with status 1)                               │
    │      └── StartupError: address resolution, bind(), listen()         │
    │                                                                      │
    │   PER-CONNECTION (client dropped, server keeps running)             │
    │      └── LocationNotFound: client gets one line, then close()       │
    │      └── SendError: client skipped, Event Loop reaps it later       │
    │                                                                      │
    │   PER-CYCLE (one recipient skipped for one broadcast)               │
    │      └── ContentUnavailable: forecast could not be produced         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Fatal errors only happen before any client exists, so there is never
partial state to clean up when one of them escapes to main().

=============================================================================
"""

from typing import Optional


class WthrError(Exception):
    """Base class for all wthr errors."""


class StartupError(WthrError):
    """
    Raised when the listening socket cannot be created.

    Covers getaddrinfo() failures, bind() failures on every candidate
    address, and listen() failures.
    """


class DuplicateHandleError(WthrError, KeyError):
    """Raised by the registry when a handle is added twice."""

    def __init__(self, handle: int):
        super().__init__(f"handle {handle} is already registered")
        self.handle = handle

    def __str__(self) -> str:
        # KeyError quotes its argument, which reads badly in logs
        return self.args[0]


class LocationNotFound(WthrError):
    """The remote address could not be mapped to coordinates."""

    def __init__(self, address: str, reason: str = "unknown"):
        super().__init__(f"no location for {address}: {reason}")
        self.address = address
        self.reason = reason


class ContentUnavailable(WthrError):
    """The content provider could not produce a payload."""


class SendError(WthrError):
    """
    Raised when a payload could not be written in full.

    bytes_sent is the exact number of bytes the peer's kernel accepted
    before the failure, so callers can report partial deliveries.
    """

    def __init__(self, bytes_sent: int, total: int, cause: Optional[BaseException] = None):
        super().__init__(f"sent {bytes_sent} of {total} bytes: {cause}")
        self.bytes_sent = bytes_sent
        self.total = total
        self.cause = cause
