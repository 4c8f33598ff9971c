"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import List, Tuple

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wthr import WeatherServer, ServerConfig
from wthr.errors import ContentUnavailable
from wthr.services.forecast import ContentProvider
from wthr.services.geolocation import StaticResolver


ZHENGZHOU = (34.7578, 113.6486)


def open_meteo_document(hours: int = 24, day: str = "2024-06-10") -> dict:
    """Open-Meteo style response with predictable values."""
    return {
        "latitude": ZHENGZHOU[0],
        "longitude": ZHENGZHOU[1],
        "timezone": "Asia/Shanghai",
        "hourly": {
            "time": [f"{day}T{h:02d}:00" for h in range(hours)],
            "temperature_2m": [20.9 + h * 0.5 for h in range(hours)],
            "relative_humidity_2m": [50 + h for h in range(hours)],
            "precipitation_probability": [h * 4 for h in range(hours)],
            "cloud_cover": [h * 4 for h in range(hours)],
            "wind_speed_10m": [3.25 + h for h in range(hours)],
        },
    }


class FakeProvider(ContentProvider):
    """Content provider that records calls and returns canned text."""

    def __init__(self, text: str = "Forecast for Monday:\n", fail_for=()):
        self.text = text
        self.fail_for = set(fail_for)
        self.calls: List[Tuple[float, float]] = []
        self._lock = threading.Lock()

    def generate(self, latitude: float, longitude: float) -> str:
        with self._lock:
            self.calls.append((latitude, longitude))
        if (latitude, longitude) in self.fail_for:
            raise ContentUnavailable("forecast service down")
        return self.text


@pytest.fixture
def ip_info_ok() -> str:
    """ipinfo.io answer for a routable address."""
    return (
        '{ "ip": "123.12.0.42",\n'
        '"city": "Zhengzhou",\n'
        '"region": "Henan",\n'
        '"country": "CN",\n'
        '"loc": "34.7578,113.6486",\n'
        '"org": "AS4837 CHINA UNICOM China169 Backbone",\n'
        '"timezone": "Asia/Shanghai"\n'
        '}'
    )


@pytest.fixture
def ip_info_bogon() -> str:
    """ipinfo.io answer for a private/loopback address."""
    return '{ "ip": "127.0.0.1",\n"bogon": true\n}'


@pytest.fixture
def forecast_document() -> dict:
    return open_meteo_document()


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port="0",  # Let OS pick a free port
        interval=3600,
        send_timeout=2.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class ServerThread:
    """Runs a WeatherServer's event loop in a background thread."""

    def __init__(self, server: WeatherServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        self.server.start()
        self._thread = threading.Thread(target=self.server.serve, daemon=True)
        self._thread.start()
        if not self.server.wait_until_ready(5.0):
            raise RuntimeError("Server failed to start")

    def connect(self) -> socket.socket:
        sock = socket.create_connection(("127.0.0.1", self.port), timeout=5.0)
        return sock

    def stop(self):
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    @property
    def stopped(self) -> bool:
        return self._thread is not None and not self._thread.is_alive()


@pytest.fixture
def zhengzhou() -> Tuple[float, float]:
    return ZHENGZHOU


@pytest.fixture
def start_server(config):
    """
    Factory starting servers in background threads.

    Defaults: 127.0.0.1 is located in Zhengzhou, content is a FakeProvider.
    Every server started is stopped at teardown.
    """
    started = []

    def _start(resolver=None, provider=None) -> ServerThread:
        server = WeatherServer(
            config,
            resolver=resolver if resolver is not None else StaticResolver({"127.0.0.1": ZHENGZHOU}),
            provider=provider if provider is not None else FakeProvider(),
        )
        thread = ServerThread(server)
        thread.start()
        started.append(thread)
        return thread

    yield _start

    for thread in started:
        thread.stop()


@pytest.fixture
def server_thread(start_server) -> ServerThread:
    """A running server with the default collaborators."""
    return start_server()


@pytest.fixture
def make_provider():
    """Factory for FakeProvider instances with custom text/failures."""
    return FakeProvider
