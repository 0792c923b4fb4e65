"""
Solar position calculator.

Low-order NOAA/NREL series for the sun's apparent position, accurate to a
few hundredths of a degree between 1800 and 2200, which is far below the
uncertainty of building heights.

Steps:
1. Julian day and Julian centuries since J2000.0
2. Mean longitude, mean anomaly and orbital eccentricity
3. Equation of centre, apparent longitude and obliquity -> declination
4. Equation of time -> true solar time -> hour angle
5. Elevation and azimuth, then atmospheric refraction

Reference: https://gml.noaa.gov/grad/solcalc/calcdetails.html
"""

from __future__ import annotations

import math
from datetime import UTC, date, datetime, time, timedelta

from patio_sun.config import EngineConfig
from patio_sun.schemas import SolarPosition, SunTimes

J2000 = 2451545.0
DAYS_PER_CENTURY = 36525.0

# Standard atmosphere used for refraction
STANDARD_PRESSURE_HPA = 1013.25
STANDARD_TEMPERATURE_C = 15.0

# Sunrise/sunset: upper limb at the horizon, refraction included
SUNRISE_ELEVATION_DEG = -0.833

_GREGORIAN_START = datetime(1582, 10, 15, tzinfo=UTC)
_BISECTION_STEPS = 32


def to_utc(timestamp: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC)


def julian_day(timestamp: datetime) -> float:
    """Julian day number (with fraction) of a UTC instant."""
    ts = to_utc(timestamp)
    year, month = ts.year, ts.month
    day = ts.day + (ts.hour + (ts.minute + (ts.second + ts.microsecond / 1e6) / 60) / 60) / 24
    if month <= 2:
        year -= 1
        month += 12

    b = 0
    if ts >= _GREGORIAN_START:
        a = year // 100
        b = 2 - a + a // 4

    return math.floor(365.25 * (year + 4716)) + math.floor(30.6001 * (month + 1)) + day + b - 1524.5


def julian_century(timestamp: datetime) -> float:
    return (julian_day(timestamp) - J2000) / DAYS_PER_CENTURY


def _normalize(angle: float, period: float = 360.0) -> float:
    return angle % period


def _clamp_unit(value: float) -> float:
    # NaN passes through untouched
    if value > 1.0:
        return 1.0
    if value < -1.0:
        return -1.0
    return value


def _sun_angles(t: float) -> tuple[float, float]:
    """Declination and equation of time (minutes) for Julian century ``t``."""
    mean_longitude = _normalize(280.46646 + t * (36000.76983 + 0.0003032 * t))
    mean_anomaly = 357.52911 + t * (35999.05029 - 0.0001537 * t)
    eccentricity = 0.016708634 - t * (0.000042037 + 0.0000001267 * t)

    m = math.radians(mean_anomaly)
    centre = (
        math.sin(m) * (1.914602 - t * (0.004817 + 0.000014 * t))
        + math.sin(2 * m) * (0.019993 - 0.000101 * t)
        + math.sin(3 * m) * 0.000289
    )
    true_longitude = mean_longitude + centre
    omega = math.radians(125.04 - 1934.136 * t)
    apparent_longitude = true_longitude - 0.00569 - 0.00478 * math.sin(omega)

    seconds = 21.448 - t * (46.8150 + t * (0.00059 - t * 0.001813))
    mean_obliquity = 23 + (26 + seconds / 60) / 60
    obliquity = mean_obliquity + 0.00256 * math.cos(omega)

    eps = math.radians(obliquity)
    declination = math.degrees(math.asin(math.sin(eps) * math.sin(math.radians(apparent_longitude))))

    y = math.tan(eps / 2) ** 2
    l0 = math.radians(mean_longitude)
    e = eccentricity
    eot = 4 * math.degrees(
        y * math.sin(2 * l0)
        - 2 * e * math.sin(m)
        + 4 * e * y * math.sin(m) * math.cos(2 * l0)
        - 0.5 * y * y * math.sin(4 * l0)
        - 1.25 * e * e * math.sin(2 * m)
    )
    return declination, eot


def hour_angle(timestamp: datetime, longitude: float, equation_of_time: float) -> float:
    """Hour angle in degrees, normalized to (-180, 180]. Zero at solar noon."""
    ts = to_utc(timestamp)
    utc_minutes = ts.hour * 60 + ts.minute + (ts.second + ts.microsecond / 1e6) / 60
    true_solar_time = _normalize(utc_minutes + 4 * longitude + equation_of_time, 1440.0)
    angle = true_solar_time / 4 - 180
    if angle <= -180:
        angle += 360
    return angle


def atmospheric_refraction(
    elevation_deg: float,
    pressure_hpa: float = STANDARD_PRESSURE_HPA,
    temperature_c: float = STANDARD_TEMPERATURE_C,
) -> float:
    """Refraction correction in degrees to add to a geometric elevation.

    Zero at or below -0.5 degrees, a constant 34 arcminutes across the
    horizon band, and Bennett's formula above it.
    """
    if not elevation_deg > -0.5:
        return 0.0

    scale = (pressure_hpa / 1010.0) * (283.0 / (273.0 + temperature_c))
    if elevation_deg <= 0.5:
        arcmin = 34.0 * scale
    else:
        arg = math.radians(elevation_deg + 10.3 / (elevation_deg + 5.11))
        arcmin = scale * 1.02 / math.tan(arg)
    return max(arcmin, 0.0) / 60.0


def _geometry(timestamp: datetime, latitude: float, longitude: float) -> tuple[float, float, float, float, float]:
    """Geometric elevation, azimuth, declination, hour angle and equation of time."""
    declination, eot = _sun_angles(julian_century(timestamp))
    ha = hour_angle(timestamp, longitude, eot)

    phi = math.radians(latitude)
    delta = math.radians(declination)
    h = math.radians(ha)

    sin_elevation = _clamp_unit(math.sin(phi) * math.sin(delta) + math.cos(phi) * math.cos(delta) * math.cos(h))
    elevation = math.degrees(math.asin(sin_elevation))

    azimuth = math.degrees(math.atan2(math.sin(h), math.cos(h) * math.sin(phi) - math.tan(delta) * math.cos(phi)))
    azimuth = _normalize(azimuth + 180.0)
    return elevation, azimuth, declination, ha, eot


def solar_position(
    timestamp: datetime,
    latitude: float | None = None,
    longitude: float | None = None,
    *,
    config: EngineConfig | None = None,
) -> SolarPosition:
    """Apparent sun position seen from ``latitude``/``longitude`` at ``timestamp``.

    Coordinates default to the configured reference city. Non-finite
    coordinates never raise; they produce NaN angles.

    Args:
        timestamp: Instant to evaluate. Naive values are treated as UTC.
        latitude: Observer latitude in degrees, north positive.
        longitude: Observer longitude in degrees, east positive.
        config: Engine policy supplying the reference city.

    Returns:
        Elevation in [-90, 90] (refraction applied) and azimuth in [0, 360),
        clockwise from north.
    """
    cfg = config or EngineConfig()
    lat = cfg.reference_latitude if latitude is None else latitude
    lon = cfg.reference_longitude if longitude is None else longitude
    ts = to_utc(timestamp)

    if not (math.isfinite(lat) and math.isfinite(lon)):
        nan = math.nan
        return SolarPosition(
            timestamp=ts,
            latitude=lat,
            longitude=lon,
            elevation_deg=nan,
            azimuth_deg=nan,
            declination_deg=nan,
            hour_angle_deg=nan,
            equation_of_time_min=nan,
        )

    elevation, azimuth, declination, ha, eot = _geometry(ts, lat, lon)
    apparent = min(elevation + atmospheric_refraction(elevation), 90.0)

    return SolarPosition(
        timestamp=ts,
        latitude=lat,
        longitude=lon,
        elevation_deg=apparent,
        azimuth_deg=azimuth,
        declination_deg=declination,
        hour_angle_deg=ha,
        equation_of_time_min=eot,
    )


def is_sun_visible(position: SolarPosition) -> bool:
    return position.is_sun_visible


def _solar_noon(day: date, longitude: float) -> datetime:
    """Solar noon in UTC, refined twice against the equation of time."""
    midday = datetime.combine(day, time(12, 0), tzinfo=UTC)
    noon = midday
    for _ in range(2):
        _, eot = _sun_angles(julian_century(noon))
        noon = midday + timedelta(minutes=-4 * longitude - eot)
    return noon


def _crossing(lo: datetime, hi: datetime, latitude: float, longitude: float, rising: bool) -> datetime:
    """Bisect for the instant the geometric elevation crosses the sunrise angle."""
    for _ in range(_BISECTION_STEPS):
        mid = lo + (hi - lo) / 2
        above = _geometry(mid, latitude, longitude)[0] > SUNRISE_ELEVATION_DEG
        if above == rising:
            hi = mid
        else:
            lo = mid
    return lo + (hi - lo) / 2


def sun_times(
    day: date,
    latitude: float | None = None,
    longitude: float | None = None,
    *,
    config: EngineConfig | None = None,
) -> SunTimes:
    """Sunrise, sunset, solar noon and peak elevation for a UTC date.

    Sunrise and sunset are None during polar day or night.
    """
    cfg = config or EngineConfig()
    lat = cfg.reference_latitude if latitude is None else latitude
    lon = cfg.reference_longitude if longitude is None else longitude

    noon = _solar_noon(day, lon)
    noon_elevation = _geometry(noon, lat, lon)[0]
    before = noon - timedelta(hours=12)
    after = noon + timedelta(hours=12)

    sunrise: datetime | None = None
    sunset: datetime | None = None
    crosses = (
        noon_elevation > SUNRISE_ELEVATION_DEG
        and _geometry(before, lat, lon)[0] <= SUNRISE_ELEVATION_DEG
        and _geometry(after, lat, lon)[0] <= SUNRISE_ELEVATION_DEG
    )
    if crosses:
        sunrise = _crossing(before, noon, lat, lon, rising=True)
        sunset = _crossing(noon, after, lat, lon, rising=False)

    return SunTimes(
        day=day,
        sunrise=sunrise,
        sunset=sunset,
        solar_noon=noon,
        max_elevation_deg=noon_elevation + atmospheric_refraction(noon_elevation),
    )
