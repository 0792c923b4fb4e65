"""
Spatial and temporal interpolation of processed weather.

Spatial: inverse-distance weighting over the four nearest samples, nearest
neighbour when fewer are available. Temporal: linear between two samples
that bracket the target time.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime

from patio_sun.errors import WeatherDataError
from patio_sun.schemas import GeoPoint, ProcessedWeather
from patio_sun.weather.processing import blocks_sun, classify

NEIGHBOURS = 4
# Distance (degrees) under which a sample counts as taken at the target
COLOCATED_DEG = 0.0001


def _distance_deg(a: GeoPoint, b: GeoPoint) -> float:
    return math.hypot(a.lon - b.lon, a.lat - b.lat)


def _rederive(weather: ProcessedWeather, **values: object) -> ProcessedWeather:
    """Copy with new values and condition/blocking recomputed from them."""
    updated = weather.model_copy(update=values)
    cloud = updated.normalized_cloud_cover_pct
    intensity = updated.precipitation_intensity
    return updated.model_copy(
        update={
            "condition": classify(cloud, intensity),
            "is_sun_blocking": blocks_sun(cloud, intensity),
        }
    )


def interpolate_spatial(target: GeoPoint | None, samples: Sequence[ProcessedWeather]) -> ProcessedWeather:
    """Estimate weather at ``target`` from samples taken at nearby points.

    A single sample, or one taken at the target itself, is returned unchanged
    apart from its location.

    Raises:
        WeatherDataError: If ``target`` is None or ``samples`` is empty.
    """
    if target is None:
        raise WeatherDataError("Target location is required")
    if not samples:
        raise WeatherDataError("At least one weather sample is required")

    if len(samples) == 1:
        return samples[0].model_copy(update={"location": target})

    ranked = sorted(samples, key=lambda s: _distance_deg(target, s.location))
    nearest = ranked[:NEIGHBOURS]

    if len(nearest) < NEIGHBOURS or _distance_deg(target, nearest[0].location) < COLOCATED_DEG:
        return nearest[0].model_copy(update={"location": target})

    weights = [1.0 / _distance_deg(target, s.location) for s in nearest]
    total = sum(weights)

    def weighted(field: str) -> float:
        return sum(w * getattr(s, field) for w, s in zip(weights, nearest, strict=True)) / total

    return _rederive(
        nearest[0],
        location=target,
        normalized_cloud_cover_pct=min(max(weighted("normalized_cloud_cover_pct"), 0.0), 100.0),
        precipitation_intensity=max(weighted("precipitation_intensity"), 0.0),
        confidence_level=min(max(weighted("confidence_level"), 0.0), 1.0),
    )


def interpolate_temporal(
    target: datetime,
    earlier: ProcessedWeather | None,
    later: ProcessedWeather | None,
) -> ProcessedWeather:
    """Linearly interpolate between two samples at ``target``.

    Targets at or outside the bracket return the nearer boundary sample
    unchanged.

    Raises:
        WeatherDataError: If a sample is missing or the samples are out of order.
    """
    if earlier is None or later is None:
        raise WeatherDataError("Both weather samples are required")
    if earlier.timestamp > later.timestamp:
        raise WeatherDataError("Weather samples must be in chronological order")

    if target <= earlier.timestamp:
        return earlier
    if target >= later.timestamp:
        return later

    span = (later.timestamp - earlier.timestamp).total_seconds()
    ratio = (target - earlier.timestamp).total_seconds() / span

    def lerp(a: float, b: float) -> float:
        return a + (b - a) * ratio

    return _rederive(
        earlier,
        timestamp=target,
        normalized_cloud_cover_pct=lerp(earlier.normalized_cloud_cover_pct, later.normalized_cloud_cover_pct),
        precipitation_intensity=lerp(earlier.precipitation_intensity, later.precipitation_intensity),
        confidence_level=lerp(earlier.confidence_level, later.confidence_level),
    )


def weather_at(
    location: GeoPoint,
    timestamp: datetime,
    samples: Sequence[ProcessedWeather],
) -> ProcessedWeather | None:
    """Weather at a place and time from a grid of samples over several hours.

    Samples are grouped by timestamp, each group interpolated spatially,
    then the two groups bracketing ``timestamp`` are interpolated in time.
    Outside the covered period the nearest group is used. Returns None when
    there are no samples.
    """
    if not samples:
        return None

    by_time: dict[datetime, list[ProcessedWeather]] = defaultdict(list)
    for sample in samples:
        by_time[sample.timestamp].append(sample)
    times = sorted(by_time)

    if timestamp <= times[0]:
        return interpolate_spatial(location, by_time[times[0]])
    if timestamp >= times[-1]:
        return interpolate_spatial(location, by_time[times[-1]])

    for before, after in zip(times, times[1:], strict=False):
        if before <= timestamp <= after:
            return interpolate_temporal(
                timestamp,
                interpolate_spatial(location, by_time[before]),
                interpolate_spatial(location, by_time[after]),
            )
    return None
