"""
=============================================================================
WTHR - Push-Style Weather Forecast TCP Server
=============================================================================

Clients open a TCP connection and then just listen: once per period the
server sends each of them an hourly forecast for wherever their IP
address is located, until they hang up.

    $ nc localhost 7000
    Forecast for Monday:
    00:00: Temperature 21C, Humidity 78%, Wind 7.2km/h, No precipitation, Clear sky
    ...

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    wthr/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m wthr PORT)
    ├── server.py            # WeatherServer: wiring, startup, shutdown
    ├── config.py            # ServerConfig dataclass
    ├── errors.py            # Exception taxonomy
    ├── core/                # The concurrent part
    │   ├── connection.py    # Connection record, send_all()
    │   ├── registry.py      # Thread-safe connection table
    │   ├── listener.py      # Listening socket setup
    │   ├── event_loop.py    # Accept/hangup loop (selectors)
    │   └── broadcaster.py   # Periodic push thread
    └── services/            # External collaborators
        ├── geolocation.py   # IP → (lat, lon) via ipinfo.io
        └── forecast.py      # (lat, lon) → text via Open-Meteo

=============================================================================
QUICK START
=============================================================================

    from wthr import WeatherServer, ServerConfig

    server = WeatherServer(ServerConfig(port="7000", interval=60))
    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .server import WeatherServer
from .config import ServerConfig

__all__ = ["WeatherServer", "ServerConfig", "__version__"]
