"""
=============================================================================
FORECAST CONTENT PROVIDER
=============================================================================

Produces the text pushed to each client on every broadcast cycle.

=============================================================================
PAYLOAD FORMAT
=============================================================================

One header line naming the day, then one line per hourly slot:

    Forecast for Monday:
    00:00: Temperature 21C, Humidity 78%, Wind 7.2km/h, No precipitation, Clear sky
    01:00: Temperature 20C, Humidity 81%, Wind 6.8km/h, Might be snow or rain, Partly cloudy
    ...
    23:00: Temperature 19C, Humidity 88%, Wind 9.0km/h, Likely will be snow or rain, Cloudy

Temperatures are truncated toward zero (21.9 → 21, -3.7 → -3).

=============================================================================
DATA SOURCE
=============================================================================

Open-Meteo's free forecast API, one day of hourly values in the
location's own time zone:

    GET https://api.open-meteo.com/v1/forecast
        ?latitude=34.7578&longitude=113.6486
        &hourly=temperature_2m,relative_humidity_2m,
                precipitation_probability,cloud_cover,wind_speed_10m
        &timezone=auto&forecast_days=1

    {
      "hourly": {
        "time":                      ["2024-06-10T00:00", ...],   24 entries
        "temperature_2m":            [21.4, ...],
        "relative_humidity_2m":      [78, ...],
        "precipitation_probability": [5, ...],
        "cloud_cover":               [12, ...],
        "wind_speed_10m":            [7.2, ...]
      }
    }

=============================================================================
"""

import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

from ..errors import ContentUnavailable


logger = logging.getLogger(__name__)

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

HOURLY_FIELDS = (
    "temperature_2m",
    "relative_humidity_2m",
    "precipitation_probability",
    "cloud_cover",
    "wind_speed_10m",
)


# =============================================================================
# PHRASES
# =============================================================================

def precipitation_phrase(probability: int) -> str:
    """Describe a 0-100 precipitation probability."""
    if probability <= 10:
        return "No precipitation"
    if probability <= 35:
        return "Might be snow or rain"
    if probability <= 80:
        return "Likely will be snow or rain"
    if probability <= 100:
        return "Very likely will be snow or rain"
    return "Invalid precipitation probability value"


def cloud_phrase(coverage: int) -> str:
    """Describe a 0-100 cloud coverage percentage."""
    if coverage <= 20:
        return "Clear sky"
    if coverage <= 60:
        return "Partly cloudy"
    if coverage <= 100:
        return "Cloudy"
    return "Invalid cloud coverage value"


# =============================================================================
# FORMATTING
# =============================================================================

@dataclass(frozen=True)
class HourlyForecast:
    hour: int
    temperature: float
    humidity: int
    wind_speed: float
    precipitation: int
    cloud_cover: int

    def to_line(self) -> str:
        return (
            f"{self.hour:02d}:00: Temperature {int(self.temperature)}C, "
            f"Humidity {self.humidity}%, Wind {self.wind_speed:.1f}km/h, "
            f"{precipitation_phrase(self.precipitation)}, {cloud_phrase(self.cloud_cover)}"
        )


def format_forecast(day_name: str, hours: List[HourlyForecast]) -> str:
    """Render the full payload: header plus one line per hour."""
    lines = [f"Forecast for {day_name}:"]
    lines.extend(h.to_line() for h in hours)
    return "\n".join(lines) + "\n"


def _day_name(timestamps: Any) -> str:
    """
    Weekday of the forecast's first slot, in the location's time zone.

    Falls back to the server's local day when the API did not send
    usable timestamps.
    """
    if isinstance(timestamps, list) and timestamps:
        try:
            return DAY_NAMES[datetime.fromisoformat(str(timestamps[0])).weekday()]
        except ValueError:
            pass
    return DAY_NAMES[time.localtime().tm_wday]


def _percent(value: Any) -> int:
    """Percentage slot; null (model has no data for it) counts as 0."""
    return 0 if value is None else int(value)


def parse_forecast(data: Dict[str, Any], hours: int = 24) -> Tuple[str, List[HourlyForecast]]:
    """
    Turn an Open-Meteo response document into hourly records.

    Raises:
        ContentUnavailable: Missing fields, wrong length, or a null
            temperature or wind value. Null percentages become 0.
    """
    hourly = data.get("hourly") if isinstance(data, dict) else None
    if not isinstance(hourly, dict):
        raise ContentUnavailable("forecast has no 'hourly' section")

    series = {}
    for name in HOURLY_FIELDS:
        values = hourly.get(name)
        if not isinstance(values, list) or len(values) != hours:
            raise ContentUnavailable(
                f"'{name}' should hold {hours} values, got "
                f"{len(values) if isinstance(values, list) else 'none'}"
            )
        series[name] = values

    records = []
    try:
        for i in range(hours):
            records.append(HourlyForecast(
                hour=i,
                temperature=float(series["temperature_2m"][i]),
                humidity=_percent(series["relative_humidity_2m"][i]),
                wind_speed=float(series["wind_speed_10m"][i]),
                precipitation=_percent(series["precipitation_probability"][i]),
                cloud_cover=_percent(series["cloud_cover"][i]),
            ))
    except (TypeError, ValueError) as e:
        raise ContentUnavailable(f"bad value in hour {i}: {e}") from e

    return _day_name(hourly.get("time")), records


# =============================================================================
# PROVIDERS
# =============================================================================

class ContentProvider(ABC):
    """Produces the payload text for a location."""

    @abstractmethod
    def generate(self, latitude: float, longitude: float) -> str:
        """
        Raises:
            ContentUnavailable: No payload can be produced right now.
        """


class OpenMeteoProvider(ContentProvider):
    """
    Content provider backed by the Open-Meteo forecast API.

    Usage:
        provider = OpenMeteoProvider(timeout=5.0)
        text = provider.generate(34.7578, 113.6486)
    """

    def __init__(
        self,
        url: str = "https://api.open-meteo.com/v1/forecast",
        timeout: float = 5.0,
        hours: int = 24,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.hours = hours
        self.session = session or requests.Session()

    def fetch(self, latitude: float, longitude: float) -> Dict[str, Any]:
        """Download the raw forecast document."""
        params = {
            "latitude": f"{latitude:f}",
            "longitude": f"{longitude:f}",
            "hourly": ",".join(HOURLY_FIELDS),
            "timezone": "auto",
            "forecast_days": 1,
        }

        try:
            response = self.session.get(self.url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise ContentUnavailable(f"forecast request failed: {e}") from e
        except ValueError as e:
            raise ContentUnavailable(f"forecast is not valid JSON: {e}") from e

    def generate(self, latitude: float, longitude: float) -> str:
        day_name, hours = parse_forecast(self.fetch(latitude, longitude), self.hours)
        logger.debug(f"Forecast for {latitude},{longitude} covers {day_name}, {len(hours)} hours")
        return format_forecast(day_name, hours)
