"""
Domain models for patio sun exposure.

Pydantic models shared by every layer of the engine. Geometry is WGS84
(lon, lat) throughout; timestamps are UTC. Value models are frozen so results
can be cached and shared between threads without copying.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

Coordinate = tuple[float, float]
Ring = tuple[Coordinate, ...]


# =============================================================================
# Geometry & venues
# =============================================================================


class GeoPoint(BaseModel):
    """A WGS84 position."""

    model_config = ConfigDict(frozen=True)

    lon: float
    lat: float


class GeoPolygon(BaseModel):
    """A WGS84 polygon: closed exterior ring plus optional holes."""

    model_config = ConfigDict(frozen=True)

    exterior: Ring
    interiors: tuple[Ring, ...] = ()


class HeightSource(StrEnum):
    """Where a building height came from. Drives shadow confidence."""

    SURVEYED = "surveyed"
    EXTERNAL_DATASET = "external_dataset"
    ADMIN_OVERRIDE = "admin_override"
    HEURISTIC = "heuristic"


class Building(BaseModel):
    """A building footprint extruded to a single height."""

    model_config = ConfigDict(frozen=True)

    id: str
    footprint: GeoPolygon
    height_m: float
    height_source: HeightSource = HeightSource.EXTERNAL_DATASET
    quality_score: float = Field(default=1.0, ge=0, le=1)
    version: int = 1


class Patio(BaseModel):
    """An outdoor seating area at ground level."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    footprint: GeoPolygon
    height_m: float | None = None
    polygon_quality: float = Field(default=1.0, ge=0, le=1)
    orientation: str | None = None
    version: int = 1


# =============================================================================
# Sun & shadows
# =============================================================================


class SolarPosition(BaseModel):
    """Apparent sun position for an observer at a UTC instant.

    Angles are not range-validated: non-finite observer inputs yield NaN
    angles rather than an error.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    latitude: float
    longitude: float
    elevation_deg: float
    azimuth_deg: float
    declination_deg: float = 0.0
    hour_angle_deg: float = 0.0
    equation_of_time_min: float = 0.0

    @property
    def is_sun_visible(self) -> bool:
        return self.elevation_deg > 0


class SunTimes(BaseModel):
    """Sunrise, sunset and solar noon for one date at one place."""

    model_config = ConfigDict(frozen=True)

    day: date
    sunrise: datetime | None
    sunset: datetime | None
    solar_noon: datetime
    max_elevation_deg: float

    @property
    def day_length(self) -> timedelta:
        if self.sunrise is None or self.sunset is None:
            return timedelta(hours=24) if self.max_elevation_deg > 0 else timedelta(0)
        return self.sunset - self.sunrise


class ShadowProjection(BaseModel):
    """Ground shadow cast by one building."""

    model_config = ConfigDict(frozen=True)

    building_id: str
    source_polygon: GeoPolygon
    height_m: float
    shadow_length_m: float
    shadow_polygon: GeoPolygon
    confidence: float = Field(gt=0, le=1)


# =============================================================================
# Weather
# =============================================================================


class WeatherSample(BaseModel):
    """Raw observation or forecast value from a weather provider."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    cloud_cover_pct: float
    precip_probability: float = Field(default=0.0, ge=0, le=1)
    temperature_c: float | None = None
    visibility_km: float | None = None
    is_forecast: bool = True
    source: str = ""
    location: GeoPoint | None = None
    issued_at: datetime | None = None


class WeatherCondition(StrEnum):
    """Coarse sky condition."""

    CLEAR = "clear"
    PARTLY_CLOUDY = "partly_cloudy"
    CLOUDY = "cloudy"
    OVERCAST = "overcast"
    PRECIPITATION = "precipitation"
    LOW_VISIBILITY = "low_visibility"


class ProcessedWeather(BaseModel):
    """Normalized weather at one place and time."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    normalized_cloud_cover_pct: float = Field(ge=0, le=100)
    precipitation_intensity: float = Field(default=0.0, ge=0)
    condition: WeatherCondition
    is_sun_blocking: bool
    confidence_level: float = Field(ge=0, le=1)
    location: GeoPoint
    is_forecast: bool = True
    source: str = ""


# =============================================================================
# Confidence & exposure
# =============================================================================


class ConfidenceCategory(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConfidenceFactors(BaseModel):
    """Breakdown of how a confidence score was reached."""

    model_config = ConfigDict(frozen=True)

    building_data_quality: float
    geometry_precision: float
    solar_accuracy: float
    shadow_accuracy: float
    geometry_quality: float
    cloud_certainty: float
    overall_confidence: float = Field(ge=0, le=1)
    category: ConfidenceCategory
    explanation: str = ""
    quality_issues: tuple[str, ...] = ()
    improvements: tuple[str, ...] = ()


class ExposureState(StrEnum):
    SUNNY = "sunny"
    PARTIAL = "partial"
    SHADED = "shaded"


class SunExposureResult(BaseModel):
    """Sun exposure of one patio at one instant."""

    model_config = ConfigDict(frozen=True)

    patio_id: str
    timestamp: datetime
    exposure_percent: float = Field(ge=0, le=100)
    state: ExposureState
    confidence: float = Field(ge=0, le=100)
    sunlit_area_sqm: float = Field(ge=0)
    shaded_area_sqm: float = Field(ge=0)
    solar_position: SolarPosition
    shadows: tuple[ShadowProjection, ...] = ()
    confidence_breakdown: ConfidenceFactors
    weather: ProcessedWeather | None = None


class CachedExposure(BaseModel):
    """A stored exposure result with its validity window."""

    model_config = ConfigDict(frozen=True)

    result: SunExposureResult
    computed_at: datetime
    expires_at: datetime
    is_stale: bool = False
    computation_version: str = "1.0"
    geometry_version: str = ""

    @property
    def patio_id(self) -> str:
        return self.result.patio_id

    @property
    def timestamp(self) -> datetime:
        return self.result.timestamp

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_usable(
        self,
        now: datetime,
        geometry_version: str | None = None,
        computation_version: str | None = None,
    ) -> bool:
        """True when the entry is fresh, not stale and built from matching inputs.

        Passing ``None`` for a version skips that comparison.
        """
        if self.is_stale or self.is_expired(now):
            return False
        if geometry_version is not None and geometry_version != self.geometry_version:
            return False
        return computation_version is None or computation_version == self.computation_version


# =============================================================================
# Timelines & sun windows
# =============================================================================


class PointSource(StrEnum):
    """How a timeline point was obtained."""

    PRECOMPUTED = "precomputed"
    INTERPOLATED = "interpolated"
    CALCULATED = "calculated"


class TimelinePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    exposure_percent: float
    state: ExposureState
    confidence: float
    is_sun_visible: bool
    solar_elevation_deg: float
    solar_azimuth_deg: float
    source: PointSource = PointSource.CALCULATED


class SunWindowQuality(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class SunWindow(BaseModel):
    """A continuous period of sunny exposure."""

    model_config = ConfigDict(frozen=True)

    patio_id: str
    day: date
    start_time: datetime
    end_time: datetime
    peak_exposure_time: datetime
    min_exposure: float
    max_exposure: float
    average_exposure: float
    confidence: float
    priority_score: float
    quality: SunWindowQuality
    is_recommended: bool
    description: str = ""
    data_point_count: int

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time


class Timeline(BaseModel):
    """Exposure points for a patio across a time range."""

    model_config = ConfigDict(frozen=True)

    patio_id: str
    start_time: datetime
    end_time: datetime
    interval: timedelta
    points: tuple[TimelinePoint, ...]
    precomputed_points_count: int = 0
    interpolated_points_count: int = 0
    average_confidence: float = 0.0
    sun_windows: tuple[SunWindow, ...] = ()

    @property
    def precomputed_ratio(self) -> float:
        return self.precomputed_points_count / len(self.points) if self.points else 0.0


class TimelineSummary(BaseModel):
    """Aggregate statistics over a timeline."""

    model_config = ConfigDict(frozen=True)

    average_exposure: float
    min_exposure: float
    max_exposure: float
    sunny_minutes: float
    partial_minutes: float
    shaded_minutes: float
    average_confidence: float


# =============================================================================
# Precomputation
# =============================================================================


class PrecomputationStatus(StrEnum):
    """Status of a precomputation run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PrecomputationSchedule(BaseModel):
    """Progress record of one day's precomputation."""

    target_date: date
    status: PrecomputationStatus = PrecomputationStatus.PENDING
    scheduled_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    patios_processed: int = 0
    patios_total: int = 0
    retry_count: int = 0
    buckets_written: int = 0
    buckets_skipped: int = 0
    failed_patios: dict[str, str] = Field(default_factory=dict)
    error_message: str | None = None

    @property
    def progress_percent(self) -> float:
        if self.patios_total == 0:
            return 0.0
        return self.patios_processed / self.patios_total * 100

    @property
    def duration(self) -> timedelta | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.started_at
