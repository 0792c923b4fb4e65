"""Parse Open-Meteo hourly forecast payloads into weather samples.

Payloads are fetched elsewhere and land in the data store as-is; this module
only normalizes them. Multi-location requests return a list of payloads, one
per grid point, and both shapes are accepted.

Expected hourly variables::

    cloud_cover                 %
    precipitation_probability   %
    temperature_2m              deg C
    visibility                  m
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import Any

from patio_sun.errors import WeatherDataError
from patio_sun.schemas import GeoPoint, WeatherSample
from patio_sun.solar import to_utc

SOURCE = "open-meteo.com"
HOURLY_VARS = ["cloud_cover", "precipitation_probability", "temperature_2m", "visibility"]

# Samples this close to the issue time are treated as nowcasts
NOWCAST_HORIZON = timedelta(hours=2)


def _payloads(payload: dict[str, Any] | list[dict[str, Any]]) -> Iterator[dict[str, Any]]:
    if isinstance(payload, list):
        yield from payload
    else:
        yield payload


def _value(series: list[Any], i: int) -> Any:
    return series[i] if i < len(series) else None


def samples_from_open_meteo(
    payload: dict[str, Any] | list[dict[str, Any]],
    *,
    issued_at: datetime | None = None,
    source: str = SOURCE,
) -> list[WeatherSample]:
    """Convert one or more Open-Meteo hourly payloads to samples.

    Args:
        payload: Raw API response, or a list of them for a location grid.
        issued_at: When the forecast was fetched. Stored on every sample, and
            hours within two hours of it are flagged as nowcasts. Defaults to
            all-forecast.
        source: Provider tag stored on every sample.

    Raises:
        WeatherDataError: If a payload has no coordinates or no hourly block.
    """
    issued = None if issued_at is None else to_utc(issued_at)
    samples: list[WeatherSample] = []
    for item in _payloads(payload):
        if "latitude" not in item or "longitude" not in item:
            raise WeatherDataError("Open-Meteo payload is missing coordinates")
        hourly = item.get("hourly")
        if not hourly or "time" not in hourly:
            raise WeatherDataError("Open-Meteo payload has no hourly data")

        location = GeoPoint(lon=float(item["longitude"]), lat=float(item["latitude"]))
        clouds = hourly.get("cloud_cover", [])
        probabilities = hourly.get("precipitation_probability", [])
        temperatures = hourly.get("temperature_2m", [])
        visibilities = hourly.get("visibility", [])

        for i, raw_time in enumerate(hourly["time"]):
            cloud = _value(clouds, i)
            if cloud is None:
                continue
            timestamp = to_utc(datetime.fromisoformat(raw_time))
            probability = _value(probabilities, i)
            visibility = _value(visibilities, i)
            is_forecast = issued is None or timestamp - issued > NOWCAST_HORIZON

            samples.append(
                WeatherSample(
                    timestamp=timestamp,
                    cloud_cover_pct=float(cloud),
                    precip_probability=min(max((probability or 0) / 100.0, 0.0), 1.0),
                    temperature_c=_value(temperatures, i),
                    visibility_km=None if visibility is None else visibility / 1000.0,
                    is_forecast=is_forecast,
                    source=source,
                    location=location,
                    issued_at=issued,
                )
            )
    return samples
