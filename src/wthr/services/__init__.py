"""External collaborators: where a client is, and what to send it."""

from .geolocation import LocationResolver, IPInfoResolver, StaticResolver, parse_ip_info
from .forecast import (
    ContentProvider,
    OpenMeteoProvider,
    HourlyForecast,
    cloud_phrase,
    format_forecast,
    parse_forecast,
    precipitation_phrase,
)

__all__ = [
    "LocationResolver",
    "IPInfoResolver",
    "StaticResolver",
    "parse_ip_info",
    "ContentProvider",
    "OpenMeteoProvider",
    "HourlyForecast",
    "cloud_phrase",
    "format_forecast",
    "parse_forecast",
    "precipitation_phrase",
]
