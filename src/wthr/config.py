"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration management for the forecast server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── wthr 7000 --interval 60                                   │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── WTHR_INTERVAL=60 wthr 7000                                │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The port is the only required setting. Everything else has a default
that reproduces the classic behaviour: one forecast per day, pushed at
midnight UTC.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


# Seconds in a day - one forecast push per calendar day
DAY_SECONDS = 24 * 60 * 60


@dataclass
class ServerConfig:
    """
    Configuration for the forecast server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, send_timeout

    BROADCAST SETTINGS
    - interval, hours, broadcast_on_start

    EXTERNAL SERVICES
    - http_timeout, ipinfo_token, ipinfo_url, forecast_url

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    port: str = "7000"
    """
    Port number or service name to listen on ("7000", "http", "0").
    Kept as a string because getaddrinfo() accepts service names.
    """

    host: Optional[str] = None
    """
    Address to bind to. None binds every local interface (AI_PASSIVE),
    IPv4 or IPv6 - whichever getaddrinfo() offers first.
    """

    backlog: int = 10
    """Maximum number of queued, not yet accepted connections."""

    send_timeout: Optional[float] = 10.0
    """
    Per-client send timeout in seconds.
    Caps how long one stalled client can hold up a broadcast cycle.
    """

    # ─────────────────────────────────────────────────────────────────────
    # BROADCAST SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    interval: float = DAY_SECONDS
    """
    Broadcast period in seconds. Wake-ups are aligned to multiples of
    this value counted from the Unix epoch, so restarts keep the same
    schedule.
    """

    hours: int = 24
    """Number of hourly slots in one forecast."""

    broadcast_on_start: bool = False
    """Run one broadcast cycle immediately after startup."""

    # ─────────────────────────────────────────────────────────────────────
    # EXTERNAL SERVICES
    # ─────────────────────────────────────────────────────────────────────

    http_timeout: float = 5.0
    """Timeout for each geolocation and forecast HTTP request."""

    ipinfo_token: Optional[str] = None
    """Optional ipinfo.io access token (raises the anonymous rate limit)."""

    ipinfo_url: str = "https://ipinfo.io"

    forecast_url: str = "https://api.open-meteo.com/v1/forecast"

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR)."""

    @classmethod
    def from_env(cls, **overrides) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        WTHR_HOST          Bind address (default: all interfaces)
        WTHR_PORT          Port or service name (default: 7000)
        WTHR_INTERVAL      Broadcast period in seconds (default: 86400)
        WTHR_SEND_TIMEOUT  Per-client send timeout (default: 10)
        WTHR_HTTP_TIMEOUT  External API timeout (default: 5)
        WTHR_IPINFO_TOKEN  ipinfo.io token (default: none)
        WTHR_LOG_LEVEL     Logging level (default: INFO)

        Keyword arguments whose value is not None win over the
        environment; this is how CLI flags are layered on top.
        =====================================================================
        """
        values = dict(
            host=os.getenv("WTHR_HOST") or None,
            port=os.getenv("WTHR_PORT", "7000"),
            interval=float(os.getenv("WTHR_INTERVAL", str(DAY_SECONDS))),
            send_timeout=float(os.getenv("WTHR_SEND_TIMEOUT", "10")),
            http_timeout=float(os.getenv("WTHR_HTTP_TIMEOUT", "5")),
            ipinfo_token=os.getenv("WTHR_IPINFO_TOKEN") or None,
            log_level=os.getenv("WTHR_LOG_LEVEL", "INFO"),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validate(self) -> None:
        """
        Validate configuration values.

        We validate at startup, not at first use, so a typo in an
        environment variable fails before the socket is even opened.
        """
        port = str(self.port).strip()
        if not port:
            raise ValueError("port must not be empty")
        if port.isdigit() and not 0 <= int(port) < 65536:
            raise ValueError(f"Invalid port: {port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.interval <= 0:
            raise ValueError("interval must be > 0")

        if self.hours < 1:
            raise ValueError("hours must be >= 1")

        if self.send_timeout is not None and self.send_timeout <= 0:
            raise ValueError("send_timeout must be > 0")

        if self.http_timeout <= 0:
            raise ValueError("http_timeout must be > 0")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {self.log_level}")
