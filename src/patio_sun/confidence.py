"""
Confidence scoring for exposure results.

overall = 0.6 * geometry_quality + 0.4 * cloud_certainty

geometry_quality blends building height reliability, patio polygon
precision and shadow accuracy. cloud_certainty reflects whether weather is
present, how close in time it is, and who produced it. Caps are applied
after blending so no amount of good geometry hides missing weather.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta

from patio_sun.schemas import (
    Building,
    ConfidenceCategory,
    ConfidenceFactors,
    Patio,
    ProcessedWeather,
    ShadowProjection,
    SolarPosition,
)

GEOMETRY_WEIGHT = 0.6
WEATHER_WEIGHT = 0.4

FORECAST_CAP = 0.90
NOWCAST_CAP = 0.95
MISSING_WEATHER_CAP = 0.60
POOR_BUILDING_DATA_CAP = 0.70
POOR_BUILDING_DATA = 0.5

HIGH_CONFIDENCE = 0.70
MEDIUM_CONFIDENCE = 0.40

MISSING_WEATHER_CERTAINTY = 0.5

# (age upper bound, freshness factor)
FRESHNESS_STEPS: tuple[tuple[timedelta, float], ...] = (
    (timedelta(minutes=5), 1.0),
    (timedelta(minutes=15), 0.95),
    (timedelta(minutes=30), 0.90),
    (timedelta(minutes=60), 0.85),
    (timedelta(hours=2), 0.75),
    (timedelta(hours=6), 0.60),
)
STALE_FRESHNESS = 0.40

SOURCE_RELIABILITY: Mapping[str, float] = {
    "yr.no": 0.95,
    "met.no": 0.95,
    "metno": 0.95,
    "openweathermap": 0.85,
    "openweather": 0.85,
}
DEFAULT_SOURCE_RELIABILITY = 0.80

LOW_QUALITY = 0.7
LOW_SUN_DEG = 10.0
MANY_SHADOWS = 5


def category_for(confidence: float) -> ConfidenceCategory:
    """Band for a 0-1 confidence. Boundaries belong to the higher band."""
    if confidence >= HIGH_CONFIDENCE:
        return ConfidenceCategory.HIGH
    if confidence >= MEDIUM_CONFIDENCE:
        return ConfidenceCategory.MEDIUM
    return ConfidenceCategory.LOW


def category_for_percent(percent: float) -> ConfidenceCategory:
    return category_for(percent / 100.0)


def freshness_factor(age: timedelta) -> float:
    age = abs(age)
    for limit, factor in FRESHNESS_STEPS:
        if age < limit:
            return factor
    return STALE_FRESHNESS


def source_reliability(source: str) -> float:
    tag = source.lower()
    for name, reliability in SOURCE_RELIABILITY.items():
        if name in tag:
            return reliability
    return DEFAULT_SOURCE_RELIABILITY


def solar_accuracy(elevation_deg: float) -> float:
    if elevation_deg > 30:
        return 0.98
    if elevation_deg > 15:
        return 0.95
    if elevation_deg > 5:
        return 0.85
    if elevation_deg > 0:
        return 0.70
    return 0.50


def building_data_quality(
    shadows: Sequence[ShadowProjection],
    buildings: Mapping[str, Building] | None = None,
) -> float:
    """Mean reliability of the shadows that were cast, 1.0 when none were."""
    if not shadows:
        return 1.0
    scores = []
    for shadow in shadows:
        building = buildings.get(shadow.building_id) if buildings else None
        quality = building.quality_score if building is not None else 1.0
        scores.append(shadow.confidence * quality)
    return sum(scores) / len(scores)


def shadow_accuracy(shadows: Sequence[ShadowProjection], elevation_deg: float) -> float:
    base = sum(s.confidence for s in shadows) / len(shadows) if shadows else 1.0
    complexity_penalty = min(len(shadows) * 0.03, 0.15)
    elevation_penalty = 0.10 if elevation_deg < LOW_SUN_DEG else 0.0
    return max(base - complexity_penalty - elevation_penalty, 0.30)


def cloud_certainty(weather: ProcessedWeather | None, timestamp: datetime) -> float:
    """Trust in the weather input for ``timestamp``; 0.5 when there is none."""
    if weather is None:
        return MISSING_WEATHER_CERTAINTY
    forecast_factor = 0.90 if weather.is_forecast else 0.95
    certainty = forecast_factor * freshness_factor(timestamp - weather.timestamp) * source_reliability(weather.source)
    return min(max(certainty, 0.0), 1.0)


def _apply_caps(confidence: float, weather: ProcessedWeather | None, building_quality: float) -> float:
    if weather is None:
        confidence = min(confidence, MISSING_WEATHER_CAP)
    elif weather.is_forecast:
        confidence = min(confidence, FORECAST_CAP)
    else:
        confidence = min(confidence, NOWCAST_CAP)

    if building_quality < POOR_BUILDING_DATA:
        confidence = min(confidence, POOR_BUILDING_DATA_CAP)
    return min(max(confidence, 0.0), 1.0)


def _explain(geometry_quality: float, certainty: float, weather: ProcessedWeather | None) -> str:
    if weather is None and geometry_quality < POOR_BUILDING_DATA:
        return "Both geometry and weather data are unavailable or unreliable; treat this as a rough estimate."
    if geometry_quality < certainty:
        return "Confidence is limited mainly by building and patio geometry quality."
    return "Confidence is limited mainly by weather certainty."


def _issues(
    factors: dict[str, float],
    solar: SolarPosition,
    shadows: Sequence[ShadowProjection],
    weather: ProcessedWeather | None,
    timestamp: datetime,
    patio_area_sqm: float | None,
) -> list[str]:
    issues = []
    if factors["building_data_quality"] < LOW_QUALITY:
        issues.append("Building height data has low reliability")
    if factors["geometry_precision"] < LOW_QUALITY:
        issues.append("Patio polygon has low quality score")
    if 0 < solar.elevation_deg < LOW_SUN_DEG:
        issues.append("Sun at low angle - shadow calculations less reliable")
    if not solar.elevation_deg > 0:
        issues.append("Sun below horizon - no direct sunlight")
    if len(shadows) > MANY_SHADOWS:
        issues.append("Complex shadow environment with many buildings")
    if patio_area_sqm is not None and patio_area_sqm < 10.0:
        issues.append("Very small patio - geometric precision more critical")
    if factors["overall_confidence"] < MEDIUM_CONFIDENCE:
        issues.append("Multiple data quality factors reduce overall confidence")

    if weather is None:
        issues.append("No weather data available - confidence capped at 60%")
    else:
        age_hours = abs(timestamp - weather.timestamp).total_seconds() / 3600
        if age_hours > 2:
            issues.append(f"Weather data is {age_hours:.1f} hours from the requested time - reduced confidence")
        if weather.is_forecast:
            issues.append("Using forecast data - confidence capped at 90%")
    return issues


def _improvements(
    factors: dict[str, float],
    shadows: Sequence[ShadowProjection],
    weather: ProcessedWeather | None,
    timestamp: datetime,
) -> list[str]:
    hints = []
    if factors["building_data_quality"] < LOW_QUALITY:
        hints.append("Survey building heights for more accurate shadow calculations")
        hints.append("Verify building data with local planning authorities")
    if factors["geometry_precision"] < LOW_QUALITY:
        hints.append("Refine patio boundary with higher precision GPS data")
        hints.append("Use satellite imagery to improve patio polygon accuracy")
    if any(s.confidence < LOW_QUALITY for s in shadows):
        hints.append("Update building height data for nearby structures")
    if factors["overall_confidence"] < HIGH_CONFIDENCE:
        hints.append("Consider multiple data sources for validation")
        hints.append("Use time-averaged calculations to improve reliability")

    if weather is None:
        hints.append("Integrate weather data for higher confidence scores")
    elif abs(timestamp - weather.timestamp) > timedelta(hours=1):
        hints.append("Refresh weather data for improved confidence")

    if not hints:
        hints.append("Data quality is good - confidence level is appropriate")
    return hints


def score_confidence(
    patio: Patio,
    shadows: Sequence[ShadowProjection],
    solar: SolarPosition,
    weather: ProcessedWeather | None,
    *,
    timestamp: datetime,
    buildings: Mapping[str, Building] | None = None,
    patio_area_sqm: float | None = None,
) -> ConfidenceFactors:
    """Blend geometry and weather signals into a confidence breakdown.

    Args:
        patio: The patio being evaluated.
        shadows: Shadows that were cast at ``timestamp``.
        solar: Sun position used for the shadows.
        weather: Weather at the patio, or None when unavailable.
        timestamp: Instant the result is for; weather age is measured from it.
        buildings: Buildings by id, so their quality scores can weight shadows.
        patio_area_sqm: Patio area, used to flag very small patios.
    """
    building_quality = building_data_quality(shadows, buildings)
    precision = patio.polygon_quality
    accuracy = shadow_accuracy(shadows, solar.elevation_deg)

    geometry_quality = min(max(0.5 * building_quality + 0.3 * precision + 0.2 * accuracy, 0.0), 1.0)
    certainty = cloud_certainty(weather, timestamp)

    overall = GEOMETRY_WEIGHT * geometry_quality + WEATHER_WEIGHT * certainty
    overall = _apply_caps(overall, weather, building_quality)

    factors = {
        "building_data_quality": building_quality,
        "geometry_precision": precision,
        "solar_accuracy": solar_accuracy(solar.elevation_deg),
        "shadow_accuracy": accuracy,
        "geometry_quality": geometry_quality,
        "cloud_certainty": certainty,
        "overall_confidence": overall,
    }
    return ConfidenceFactors(
        **factors,
        category=category_for(overall),
        explanation=_explain(geometry_quality, certainty, weather),
        quality_issues=tuple(_issues(factors, solar, shadows, weather, timestamp, patio_area_sqm)),
        improvements=tuple(_improvements(factors, shadows, weather, timestamp)),
    )
