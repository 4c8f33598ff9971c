"""
=============================================================================
WTHR CLI ENTRY POINT
=============================================================================

    # Listen on port 7000, push a forecast every UTC midnight
    python -m wthr 7000

    # Service names work too
    python -m wthr http-alt

    # Push every minute, starting right away (handy for a demo)
    python -m wthr 7000 --interval 60 --now

Exit codes:
    0   clean shutdown (Ctrl+C / SIGTERM)
    1   fatal startup failure (bad config, address, bind, listen)
    2   missing or malformed arguments (usage printed to stderr)

=============================================================================
"""

import argparse
import sys
from typing import List, Optional

from . import __version__
from .config import ServerConfig
from .errors import StartupError
from .server import WeatherServer


def port_or_service(value: str) -> str:
    """argparse type: a port number 0-65535 or a service name."""
    value = value.strip()
    if value.isdigit():
        if not 0 <= int(value) < 65536:
            raise argparse.ArgumentTypeError(f"port out of range: {value}")
        return value
    if value and all(c.isalnum() or c in "-_" for c in value):
        return value
    raise argparse.ArgumentTypeError(f"not a port or service name: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wthr",
        description="Push an hourly weather forecast to every connected TCP client",
    )

    parser.add_argument(
        "port",
        type=port_or_service,
        help="Port number or service name to listen on",
    )

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Address to bind to (default: all interfaces)",
    )

    parser.add_argument(
        "--interval", "-i",
        type=float,
        default=None,
        help="Seconds between broadcasts, aligned to the epoch (default: 86400)",
    )

    parser.add_argument(
        "--now",
        action="store_true",
        help="Broadcast once right after startup",
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"wthr {__version__}",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run the server, return the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = ServerConfig.from_env(
            port=args.port,
            host=args.host,
            interval=args.interval,
            log_level=args.log_level,
            broadcast_on_start=args.now or None,
        )
        server = WeatherServer(config)
        server.run()
    except (StartupError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
