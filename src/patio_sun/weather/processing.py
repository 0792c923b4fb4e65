"""Normalize raw weather samples into sun-relevant conditions."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from patio_sun.errors import WeatherDataError
from patio_sun.schemas import GeoPoint, ProcessedWeather, WeatherCondition, WeatherSample

logger = logging.getLogger(__name__)

CLEAR_SKY_THRESHOLD = 20.0
CLOUDY_THRESHOLD = 70.0
OVERCAST_THRESHOLD = 80.0
SUN_BLOCKING_CLOUD_THRESHOLD = 80.0
PRECIPITATION_INTENSITY_THRESHOLD = 0.1  # mm/h
LOW_VISIBILITY_KM = 5.0

FORECAST_CONFIDENCE = 0.7
NOWCAST_CONFIDENCE = 0.9
MET_NO_BONUS = 0.05
LONG_RANGE_PENALTY = 0.1


def normalize_cloud_cover(cloud_cover_pct: float) -> float:
    return min(max(cloud_cover_pct, 0.0), 100.0)


def precipitation_intensity(probability: float) -> float:
    """Estimated precipitation in mm/h from a probability in [0, 1]."""
    if probability >= 0.7:
        return 2.0
    if probability >= 0.4:
        return 0.5
    if probability >= 0.2:
        return 0.1
    return 0.0


def classify(
    cloud_cover_pct: float,
    intensity: float,
    visibility_km: float | None = None,
) -> WeatherCondition:
    """Coarse sky condition. Precipitation wins over visibility over cloud."""
    if intensity > PRECIPITATION_INTENSITY_THRESHOLD:
        return WeatherCondition.PRECIPITATION
    if visibility_km is not None and visibility_km < LOW_VISIBILITY_KM:
        return WeatherCondition.LOW_VISIBILITY
    if cloud_cover_pct >= OVERCAST_THRESHOLD:
        return WeatherCondition.OVERCAST
    if cloud_cover_pct >= CLOUDY_THRESHOLD:
        return WeatherCondition.CLOUDY
    if cloud_cover_pct >= CLEAR_SKY_THRESHOLD:
        return WeatherCondition.PARTLY_CLOUDY
    return WeatherCondition.CLEAR


def blocks_sun(cloud_cover_pct: float, intensity: float, visibility_km: float | None = None) -> bool:
    if intensity > PRECIPITATION_INTENSITY_THRESHOLD:
        return True
    if cloud_cover_pct > SUN_BLOCKING_CLOUD_THRESHOLD:
        return True
    return visibility_km is not None and visibility_km < LOW_VISIBILITY_KM


def sample_confidence(sample: WeatherSample, reference_time: datetime | None = None) -> float:
    """Trust in a sample, 0.5-1.0. Long-range forecasts score lower."""
    confidence = FORECAST_CONFIDENCE if sample.is_forecast else NOWCAST_CONFIDENCE
    if sample.is_forecast and reference_time is not None:
        lead = sample.timestamp - reference_time
        if lead > timedelta(hours=24):
            confidence -= LONG_RANGE_PENALTY
        if lead > timedelta(hours=48):
            confidence -= LONG_RANGE_PENALTY

    bonus = MET_NO_BONUS if "met.no" in sample.source.lower() else 0.0
    return max(0.5, min(1.0, confidence + bonus))


def process_sample(
    sample: WeatherSample,
    location: GeoPoint | None = None,
    *,
    reference_time: datetime | None = None,
) -> ProcessedWeather:
    """Turn a provider sample into :class:`ProcessedWeather`.

    Args:
        sample: Raw provider value.
        location: Where the sample applies. Defaults to ``sample.location``.
        reference_time: When the forecast was issued; drives the long-range
            penalty. Omit for no penalty.

    Raises:
        WeatherDataError: If neither ``location`` nor ``sample.location`` is set.
    """
    where = location or sample.location
    if where is None:
        raise WeatherDataError(f"Weather sample at {sample.timestamp.isoformat()} has no location")

    cloud = normalize_cloud_cover(sample.cloud_cover_pct)
    intensity = precipitation_intensity(sample.precip_probability)
    condition = classify(cloud, intensity, sample.visibility_km)

    processed = ProcessedWeather(
        timestamp=sample.timestamp,
        normalized_cloud_cover_pct=cloud,
        precipitation_intensity=intensity,
        condition=condition,
        is_sun_blocking=blocks_sun(cloud, intensity, sample.visibility_km),
        confidence_level=sample_confidence(sample, reference_time),
        location=where,
        is_forecast=sample.is_forecast,
        source=sample.source,
    )
    logger.debug(
        "Processed weather: %s, cloud=%.0f%%, blocking=%s",
        condition,
        cloud,
        processed.is_sun_blocking,
    )
    return processed


def process_samples(
    samples: Iterable[WeatherSample],
    location: GeoPoint | None = None,
    *,
    reference_time: datetime | None = None,
) -> list[ProcessedWeather]:
    """Process a batch of samples, ordered by timestamp."""
    processed = [process_sample(s, location, reference_time=reference_time) for s in samples]
    return sorted(processed, key=lambda w: w.timestamp)
