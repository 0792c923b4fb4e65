"""
Application settings and engine policy.

``Settings`` is read from the environment (prefix ``PATIO_SUN_``) and an
optional ``.env`` file. ``EngineConfig`` is the immutable policy object the
engine, timeline and precompute layers take explicitly, so library code never
reads the environment on its own.
"""

from __future__ import annotations

import hashlib
from datetime import time, timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Gothenburg, the reference city
DEFAULT_LATITUDE = 57.7089
DEFAULT_LONGITUDE = 11.9746

# EngineConfig fields that change a computed exposure result
RESULT_FIELDS = {
    "sunny_threshold",
    "partial_threshold",
    "reliable_elevation_deg",
    "max_shadow_distance_m",
}


class EngineConfig(BaseModel):
    """Thresholds and limits for exposure calculation and precomputation."""

    model_config = {"frozen": True}

    reference_latitude: float = Field(default=DEFAULT_LATITUDE, ge=-90, le=90)
    reference_longitude: float = Field(default=DEFAULT_LONGITUDE, ge=-180, le=180)

    # Exposure state bands (inclusive lower bounds)
    sunny_threshold: float = Field(default=70.0, ge=0, le=100)
    partial_threshold: float = Field(default=30.0, ge=0, le=100)

    # Shadows
    reliable_elevation_deg: float = Field(default=5.0, ge=0, le=90)
    max_shadow_distance_m: float = Field(default=200.0, gt=0)

    # Timeline
    max_timeline_hours: float = Field(default=48.0, gt=0)
    min_interval_minutes: float = Field(default=1.0, gt=0)
    default_interval_minutes: int = Field(default=10, gt=0)
    min_sun_window_minutes: float = Field(default=15.0, ge=0)

    # Precompute & cache
    precompute_start: time = time(8, 0)
    precompute_end: time = time(20, 0)
    precompute_resolution_minutes: int = Field(default=10, gt=0)
    precompute_days: int = Field(default=3, gt=0)
    cache_ttl_hours: float = Field(default=72.0, gt=0)
    max_workers: int = Field(default=4, gt=0)
    precompute_batch_size: int = Field(default=10, gt=0)
    max_patio_retries: int = Field(default=2, ge=0)
    computation_version: str = "1.0"

    @property
    def policy_version(self) -> str:
        """``computation_version`` plus a digest of the fields that shape results.

        Cached entries computed under a different policy are not reused.
        """
        digest = hashlib.sha256(self.model_dump_json(include=RESULT_FIELDS).encode()).hexdigest()
        return f"{self.computation_version}-{digest[:12]}"

    @property
    def resolution(self) -> timedelta:
        return timedelta(minutes=self.precompute_resolution_minutes)

    @property
    def default_interval(self) -> timedelta:
        return timedelta(minutes=self.default_interval_minutes)

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(hours=self.cache_ttl_hours)


class Settings(BaseSettings):
    """Process-level settings loaded from ``PATIO_SUN_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PATIO_SUN_",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "patio-sun"
    app_env: str = "development"
    debug: bool = False

    data_dir: Path = Path("data")
    lat: float = DEFAULT_LATITUDE
    lon: float = DEFAULT_LONGITUDE

    sunny_threshold: float = 70.0
    partial_threshold: float = 30.0
    max_workers: int = 4
    cache_ttl_hours: float = 72.0

    def engine_config(self) -> EngineConfig:
        """Build the engine policy from these settings."""
        return EngineConfig(
            reference_latitude=self.lat,
            reference_longitude=self.lon,
            sunny_threshold=self.sunny_threshold,
            partial_threshold=self.partial_threshold,
            max_workers=self.max_workers,
            cache_ttl_hours=self.cache_ttl_hours,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the cached process settings."""
    return Settings()
