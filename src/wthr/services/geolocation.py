"""
=============================================================================
LOCATION RESOLVER
=============================================================================

Maps a client's IP address to (latitude, longitude).

The production resolver asks ipinfo.io, which answers with JSON like:

    {
      "ip": "123.12.0.42",
      "city": "Zhengzhou",
      "loc": "34.7578,113.6486",     ◄── what we need
      ...
    }

or, for private/loopback/reserved addresses:

    { "ip": "127.0.0.1", "bogon": true }

Both "bogon" answers and answers without a usable "loc" mean the client
cannot be served, which the Event Loop turns into a one-line notice and
an immediate close.

The resolver runs on the Event Loop thread, so every request carries a
timeout. A slow lookup delays other accepts by at most that long.

=============================================================================
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import requests

from ..errors import LocationNotFound


logger = logging.getLogger(__name__)

Location = Tuple[float, float]


class LocationResolver(ABC):
    """Maps a textual remote address to coordinates."""

    @abstractmethod
    def resolve(self, remote_address: str) -> Location:
        """
        Return (latitude, longitude) for remote_address.

        Raises:
            LocationNotFound: The address has no known location.
        """


def parse_ip_info(text: str, address: str = "?") -> Location:
    """
    Extract coordinates from an ipinfo.io JSON answer.

    Raises:
        LocationNotFound: Bad JSON, a bogon address, or no usable "loc".
    """
    try:
        info = json.loads(text)
    except (TypeError, ValueError) as e:
        raise LocationNotFound(address, f"invalid JSON: {e}") from e

    if not isinstance(info, dict):
        raise LocationNotFound(address, "unexpected JSON document")

    if info.get("bogon"):
        raise LocationNotFound(address, "IP is bogon")

    loc = info.get("loc")
    if not isinstance(loc, str):
        raise LocationNotFound(address, "missing 'loc' field")

    try:
        lat_text, lon_text = loc.split(",")
        latitude, longitude = float(lat_text), float(lon_text)
    except ValueError as e:
        raise LocationNotFound(address, f"malformed 'loc' field {loc!r}") from e

    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        raise LocationNotFound(address, f"coordinates out of range: {loc!r}")

    return latitude, longitude


class IPInfoResolver(LocationResolver):
    """
    Resolver backed by the ipinfo.io lookup API.

    Usage:
        resolver = IPInfoResolver(timeout=5.0)
        resolver.resolve("123.12.0.42")   # → (34.7578, 113.6486)
    """

    def __init__(
        self,
        base_url: str = "https://ipinfo.io",
        token: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def resolve(self, remote_address: str) -> Location:
        params = {"token": self.token} if self.token else None

        try:
            response = self.session.get(
                f"{self.base_url}/{remote_address}",
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise LocationNotFound(remote_address, f"lookup failed: {e}") from e

        if response.status_code != 200:
            raise LocationNotFound(remote_address, f"lookup returned HTTP {response.status_code}")

        location = parse_ip_info(response.text, remote_address)
        logger.debug(f"Resolved {remote_address} to {location[0]},{location[1]}")
        return location


class StaticResolver(LocationResolver):
    """
    Resolver answering from a fixed table.

    Handy for local runs where every client is on a private network
    (ipinfo.io reports those as bogons), and for tests.
    """

    def __init__(self, locations: Dict[str, Location], default: Optional[Location] = None):
        self.locations = dict(locations)
        self.default = default

    def resolve(self, remote_address: str) -> Location:
        location = self.locations.get(remote_address, self.default)
        if location is None:
            raise LocationNotFound(remote_address, "not in static table")
        return location
