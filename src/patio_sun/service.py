"""
Exposure service: the operations callers use.

Wires the pure engine to its collaborators (geometry store, weather source,
exposure cache). Collaborator I/O happens here and only here; the weather
source is allowed to fail, in which case results carry no weather and a
capped confidence.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, date, datetime, timedelta

from patio_sun.cache import ExposureCache, InMemoryExposureCache, StoreExposureCache
from patio_sun.config import EngineConfig
from patio_sun.errors import ExposureError, PatioNotFoundError
from patio_sun.exposure import SunExposureEngine
from patio_sun.geometry import centroid, validate_polygon
from patio_sun.precompute import PrecomputationRunner, ScheduleRegistry
from patio_sun.schemas import (
    Building,
    GeoPoint,
    Patio,
    PrecomputationSchedule,
    ProcessedWeather,
    SunExposureResult,
    SunWindow,
    Timeline,
)
from patio_sun.solar import to_utc
from patio_sun.store import DataStore
from patio_sun.timeline import ExposureFn, TimelineGenerator, rank_sun_windows, validate_range
from patio_sun.venues import GeometryStore, geometry_version, load_geometry
from patio_sun.weather import StoreWeatherSource, WeatherSource, process_sample, weather_at

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class SunExposureService:
    """Single, batch, timeline and precompute entry points for one deployment."""

    def __init__(
        self,
        geometry: GeometryStore,
        weather: WeatherSource | None = None,
        cache: ExposureCache | None = None,
        config: EngineConfig | None = None,
        registry: ScheduleRegistry | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.geometry = geometry
        self.weather = weather
        self.cache = cache if cache is not None else InMemoryExposureCache(self.config.resolution)
        self.clock = clock or (lambda: datetime.now(UTC))
        self.engine = SunExposureEngine(self.config)
        self.timelines = TimelineGenerator(self.cache, self.config, self.clock)
        self.runner = PrecomputationRunner(
            geometry,
            self.cache,
            self.exposure_fn,
            self.config,
            registry,
            self.clock,
        )

    # -------------------------------------------------------------------------
    # Collaborators
    # -------------------------------------------------------------------------

    def get_patio(self, patio_id: str) -> Patio:
        patio = self.geometry.get_patio(patio_id)
        if patio is None:
            raise PatioNotFoundError(patio_id)
        return patio

    def fetch_weather(self, location: GeoPoint, start: datetime, end: datetime) -> list[ProcessedWeather]:
        """Processed samples around ``[start, end]``; empty if the source fails."""
        if self.weather is None:
            return []
        try:
            samples = self.weather.samples_for(location, start, end)
        except Exception as exc:
            logger.warning("Weather unavailable for %s..%s, continuing without it: %s", start, end, exc)
            return []

        now = self.clock()
        return [process_sample(s, s.location or location, reference_time=s.issued_at or now) for s in samples]

    def nearby(self, patio: Patio) -> tuple[list[Building], str]:
        """Buildings that can shade ``patio`` and the matching geometry version.

        Raises:
            InvalidGeometryError: If the patio footprint is malformed.
        """
        validate_polygon(patio.footprint, patio.id)
        buildings = self.geometry.buildings_near(patio, self.config.max_shadow_distance_m)
        return buildings, geometry_version(patio, buildings)

    def exposure_fn(
        self,
        patio: Patio,
        start: datetime,
        end: datetime,
        weather: Sequence[ProcessedWeather] | None = None,
        buildings: Sequence[Building] | None = None,
    ) -> ExposureFn:
        """Exposure calculator for ``patio`` with buildings and weather loaded once.

        Raises:
            InvalidGeometryError: If the patio footprint is malformed.
        """
        if buildings is None:
            buildings, _ = self.nearby(patio)
        where = centroid(patio.footprint)
        samples = list(weather) if weather is not None else self.fetch_weather(where, start, end)

        def compute(timestamp: datetime) -> SunExposureResult:
            ts = to_utc(timestamp)
            return self.engine.calculate(patio, buildings, ts, weather_at(where, ts, samples))

        return compute

    # -------------------------------------------------------------------------
    # Exposed operations
    # -------------------------------------------------------------------------

    def calculate_exposure(self, patio_id: str, timestamp: datetime) -> SunExposureResult:
        """Exposure of one patio at one instant.

        A usable cached bucket at exactly ``timestamp`` is returned as-is.

        Raises:
            PatioNotFoundError: If the patio does not exist.
            InvalidGeometryError: If its footprint or a nearby building is malformed.
        """
        ts = to_utc(timestamp)
        patio = self.get_patio(patio_id)
        buildings, version = self.nearby(patio)

        entry = self.cache.get(patio.id, ts)
        if (
            entry is not None
            and entry.patio_id == patio.id
            and entry.timestamp == ts
            and entry.is_usable(self.clock(), version, self.config.policy_version)
        ):
            return entry.result
        return self.exposure_fn(patio, ts, ts, buildings=buildings)(ts)

    def calculate_exposure_batch(self, patio_ids: Sequence[str], timestamp: datetime) -> list[SunExposureResult]:
        """Exposure of many patios at one instant, in input order.

        Weather is fetched once for the batch. Unknown patios and patios with
        bad geometry are logged and left out of the result.
        """
        ts = to_utc(timestamp)
        patios: list[Patio] = []
        for patio_id in patio_ids:
            patio = self.geometry.get_patio(patio_id)
            if patio is None:
                logger.warning("Skipping unknown patio %s", patio_id)
                continue
            patios.append(patio)
        if not patios:
            return []

        weather = self.fetch_weather(centroid(patios[0].footprint), ts, ts)

        def one(patio: Patio) -> SunExposureResult | None:
            try:
                return self.exposure_fn(patio, ts, ts, weather)(ts)
            except ExposureError as exc:
                logger.warning("Skipping patio %s: %s", patio.id, exc)
                return None

        workers = max(1, min(self.config.max_workers, len(patios)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(one, patios))
        return [r for r in results if r is not None]

    def generate_timeline(
        self,
        patio_id: str,
        start: datetime,
        end: datetime,
        interval: timedelta | None = None,
    ) -> Timeline:
        """Exposure timeline over ``[start, end]`` (default 10 minute steps).

        Raises:
            PatioNotFoundError: If the patio does not exist.
            InvalidTimeRangeError: If the range is reversed, over 48 hours,
                or stepped below one minute.
        """
        patio = self.get_patio(patio_id)
        start, end = to_utc(start), to_utc(end)
        step = interval or self.config.default_interval
        validate_range(start, end, step, self.config)

        buildings, version = self.nearby(patio)
        compute = self.exposure_fn(patio, start, end, buildings=buildings)
        return self.timelines.generate(patio, start, end, step, compute, version)

    def get_best_sun_windows(
        self,
        patio_id: str,
        start: datetime,
        end: datetime,
        max_windows: int = 3,
    ) -> list[SunWindow]:
        """Highest-priority sunny windows in ``[start, end]``."""
        timeline = self.generate_timeline(patio_id, start, end)
        return rank_sun_windows(timeline.sun_windows, max_windows)

    def run_precomputation(
        self,
        target_date: date,
        *,
        cancel: threading.Event | None = None,
        deadline: datetime | None = None,
        force: bool = False,
    ) -> PrecomputationSchedule:
        """Precompute and cache every patio for ``target_date``."""
        return self.runner.run(target_date, cancel=cancel, deadline=deadline, force=force)

    def invalidate_patio(self, patio_id: str, from_date: date | None = None) -> int:
        """Mark cached results stale after a patio or nearby building changed."""
        return self.cache.mark_stale(patio_id, from_date)

    @classmethod
    def from_store(cls, store: DataStore, config: EngineConfig | None = None) -> SunExposureService:
        """Service backed entirely by the on-disk DataStore."""
        cfg = config or EngineConfig()
        return cls(
            load_geometry(store),
            weather=StoreWeatherSource(store),
            cache=StoreExposureCache(store, cfg.resolution),
            config=cfg,
            registry=ScheduleRegistry(store),
        )
