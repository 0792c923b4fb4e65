"""
Exposure timelines and best-sun windows.

A timeline samples a patio at fixed steps over ``[start, end]``. Each point
is taken from the cache when a usable entry sits exactly on it, linearly
interpolated when it falls between two usable cached buckets, and computed
on demand otherwise. On-demand points that land on a bucket are written
back so the next request can reuse them.

Sun windows are runs of consecutive Sunny points, scored and ranked so the
best few can be recommended.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from datetime import UTC, datetime, timedelta

from patio_sun.cache import ExposureCache, bucket_start, is_bucket_aligned, new_entry
from patio_sun.config import EngineConfig
from patio_sun.errors import InvalidTimeRangeError
from patio_sun.exposure import exposure_state
from patio_sun.geometry import centroid
from patio_sun.schemas import (
    CachedExposure,
    ExposureState,
    Patio,
    PointSource,
    SunExposureResult,
    SunWindow,
    SunWindowQuality,
    Timeline,
    TimelinePoint,
    TimelineSummary,
)
from patio_sun.solar import solar_position, to_utc
from patio_sun.venues import geometry_version

logger = logging.getLogger(__name__)

ExposureFn = Callable[[datetime], SunExposureResult]
Clock = Callable[[], datetime]

# (min average exposure, min duration, min confidence) per quality band
QUALITY_BANDS: tuple[tuple[SunWindowQuality, float, timedelta, float], ...] = (
    (SunWindowQuality.EXCELLENT, 80.0, timedelta(hours=2), 80.0),
    (SunWindowQuality.GOOD, 60.0, timedelta(hours=1), 70.0),
    (SunWindowQuality.FAIR, 40.0, timedelta(minutes=30), 60.0),
)
QUALITY_BONUS = {
    SunWindowQuality.EXCELLENT: 20.0,
    SunWindowQuality.GOOD: 10.0,
    SunWindowQuality.FAIR: 5.0,
    SunWindowQuality.POOR: 0.0,
}
RECOMMENDED_MIN_DURATION = timedelta(minutes=30)
RECOMMENDED_MIN_EXPOSURE = 50.0
DEFAULT_MAX_WINDOWS = 3


def validate_range(start: datetime, end: datetime, interval: timedelta, config: EngineConfig | None = None) -> None:
    """Reject empty, reversed, overlong or too finely stepped ranges.

    Raises:
        InvalidTimeRangeError: If the range cannot be sampled.
    """
    cfg = config or EngineConfig()
    if end <= start:
        raise InvalidTimeRangeError("End time must be after start time", start, end, interval)
    if end - start > timedelta(hours=cfg.max_timeline_hours):
        msg = f"Time range cannot exceed {cfg.max_timeline_hours:g} hours"
        raise InvalidTimeRangeError(msg, start, end, interval)
    if interval < timedelta(minutes=cfg.min_interval_minutes):
        msg = f"Interval must be at least {cfg.min_interval_minutes:g} minute(s)"
        raise InvalidTimeRangeError(msg, start, end, interval)


class TimeSteps:
    """Timestamps from ``start`` to ``end`` inclusive, ``interval`` apart.

    Iterating again starts over, so the same object can be consumed twice.
    """

    def __init__(self, start: datetime, end: datetime, interval: timedelta) -> None:
        self.start = to_utc(start)
        self.end = to_utc(end)
        self.interval = interval

    def __iter__(self) -> Iterator[datetime]:
        current = self.start
        while current <= self.end:
            yield current
            current += self.interval

    def __len__(self) -> int:
        if self.end < self.start:
            return 0
        return (self.end - self.start) // self.interval + 1


class ExposurePoints:
    """Lazy, restartable sequence of timeline points for one patio."""

    def __init__(
        self,
        generator: TimelineGenerator,
        patio: Patio,
        steps: TimeSteps,
        compute: ExposureFn,
        version: str,
    ) -> None:
        self.generator = generator
        self.patio = patio
        self.steps = steps
        self.compute = compute
        self.version = version

    def __iter__(self) -> Iterator[TimelinePoint]:
        for timestamp in self.steps:
            yield self.generator.point_at(self.patio, timestamp, self.compute, self.version)

    def __len__(self) -> int:
        return len(self.steps)


def point_from_result(result: SunExposureResult, source: PointSource) -> TimelinePoint:
    solar = result.solar_position
    return TimelinePoint(
        timestamp=result.timestamp,
        exposure_percent=result.exposure_percent,
        state=result.state,
        confidence=result.confidence,
        is_sun_visible=solar.is_sun_visible,
        solar_elevation_deg=solar.elevation_deg,
        solar_azimuth_deg=solar.azimuth_deg,
        source=source,
    )


class TimelineGenerator:
    """Builds timelines from cached buckets and on-demand calculations."""

    def __init__(
        self,
        cache: ExposureCache | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.cache = cache
        self.config = config or EngineConfig()
        self.clock = clock or (lambda: datetime.now(UTC))

    def _usable(self, patio: Patio, timestamp: datetime, now: datetime, version: str) -> CachedExposure | None:
        if self.cache is None:
            return None
        entry = self.cache.get(patio.id, timestamp)
        if entry is None or entry.patio_id != patio.id or entry.timestamp != timestamp:
            return None
        return entry if entry.is_usable(now, version, self.config.policy_version) else None

    def _interpolate(
        self,
        patio: Patio,
        timestamp: datetime,
        before: CachedExposure,
        after: CachedExposure,
    ) -> TimelinePoint:
        span = (after.timestamp - before.timestamp).total_seconds()
        ratio = (timestamp - before.timestamp).total_seconds() / span
        low, high = before.result.exposure_percent, after.result.exposure_percent
        exposure = low + (high - low) * ratio
        confidence = before.result.confidence + (after.result.confidence - before.result.confidence) * ratio

        where = centroid(patio.footprint)
        solar = solar_position(timestamp, where.lat, where.lon, config=self.config)
        return TimelinePoint(
            timestamp=timestamp,
            exposure_percent=exposure,
            state=exposure_state(exposure, self.config),
            confidence=confidence,
            is_sun_visible=solar.is_sun_visible,
            solar_elevation_deg=solar.elevation_deg,
            solar_azimuth_deg=solar.azimuth_deg,
            source=PointSource.INTERPOLATED,
        )

    def point_at(
        self,
        patio: Patio,
        timestamp: datetime,
        compute: ExposureFn,
        version: str | None = None,
    ) -> TimelinePoint:
        """One timeline point, preferring cached data over calculation.

        ``version`` is the geometry fingerprint of the patio and its nearby
        buildings; without one only the patio itself is fingerprinted.
        """
        ts = to_utc(timestamp)
        now = self.clock()
        version = version or geometry_version(patio)

        entry = self._usable(patio, ts, now, version)
        if entry is not None:
            return point_from_result(entry.result, PointSource.PRECOMPUTED)

        aligned = self.cache is not None and is_bucket_aligned(ts, self.cache.resolution)
        if self.cache is not None and not aligned:
            before_ts = bucket_start(ts, self.cache.resolution)
            before = self._usable(patio, before_ts, now, version)
            after = self._usable(patio, before_ts + self.cache.resolution, now, version) if before else None
            if before is not None and after is not None:
                return self._interpolate(patio, ts, before, after)

        result = compute(ts)
        if self.cache is not None and aligned:
            self.cache.put(
                new_entry(
                    result,
                    now=now,
                    ttl=self.config.cache_ttl,
                    computation_version=self.config.policy_version,
                    geometry_version=version,
                )
            )
        return point_from_result(result, PointSource.CALCULATED)

    def points(
        self,
        patio: Patio,
        start: datetime,
        end: datetime,
        interval: timedelta,
        compute: ExposureFn,
        version: str | None = None,
    ) -> ExposurePoints:
        """Lazy points over ``[start, end]``. The range is checked up front."""
        start, end = to_utc(start), to_utc(end)
        validate_range(start, end, interval, self.config)
        steps = TimeSteps(start, end, interval)
        return ExposurePoints(self, patio, steps, compute, version or geometry_version(patio))

    def generate(
        self,
        patio: Patio,
        start: datetime,
        end: datetime,
        interval: timedelta | None,
        compute: ExposureFn,
        version: str | None = None,
    ) -> Timeline:
        """Materialize a timeline with its sun windows.

        Raises:
            InvalidTimeRangeError: If the range is reversed, empty, longer than
                the configured maximum, or stepped below the minimum interval.
        """
        step = interval or self.config.default_interval
        points = tuple(self.points(patio, start, end, step, compute, version))
        precomputed = sum(1 for p in points if p.source == PointSource.PRECOMPUTED)
        interpolated = sum(1 for p in points if p.source == PointSource.INTERPOLATED)
        logger.debug(
            "Timeline for %s: %d points (%d cached, %d interpolated)",
            patio.id,
            len(points),
            precomputed,
            interpolated,
        )

        return Timeline(
            patio_id=patio.id,
            start_time=to_utc(start),
            end_time=to_utc(end),
            interval=step,
            points=points,
            precomputed_points_count=precomputed,
            interpolated_points_count=interpolated,
            average_confidence=sum(p.confidence for p in points) / len(points) if points else 0.0,
            sun_windows=tuple(find_sun_windows(patio.id, points, step, self.config)),
        )


def window_quality(average_exposure: float, duration: timedelta, confidence: float) -> SunWindowQuality:
    for quality, min_exposure, min_duration, min_confidence in QUALITY_BANDS:
        if average_exposure >= min_exposure and duration >= min_duration and confidence >= min_confidence:
            return quality
    return SunWindowQuality.POOR


def priority_score(peak_exposure: float, duration: timedelta, confidence: float, quality: SunWindowQuality) -> float:
    hours = duration.total_seconds() / 3600
    return 0.4 * peak_exposure + 0.3 * min(hours * 25, 100) + 0.2 * confidence + 0.1 * QUALITY_BONUS[quality]


def _describe(quality: SunWindowQuality, start: datetime, end: datetime, average: float) -> str:
    minutes = int((end - start).total_seconds() // 60)
    hours, rest = divmod(minutes, 60)
    length = f"{hours}h {rest:02d}m" if hours else f"{rest}m"
    return f"{quality.value.capitalize()} sun {start:%H:%M}-{end:%H:%M} UTC ({length}, avg {average:.0f}%)"


def _build_window(
    patio_id: str,
    run: Sequence[TimelinePoint],
    end: datetime,
) -> SunWindow:
    exposures = [p.exposure_percent for p in run]
    peak = max(run, key=lambda p: p.exposure_percent)
    average = sum(exposures) / len(exposures)
    confidence = sum(p.confidence for p in run) / len(run)
    start = run[0].timestamp
    duration = end - start
    quality = window_quality(average, duration, confidence)

    return SunWindow(
        patio_id=patio_id,
        day=start.date(),
        start_time=start,
        end_time=end,
        peak_exposure_time=peak.timestamp,
        min_exposure=min(exposures),
        max_exposure=max(exposures),
        average_exposure=average,
        confidence=confidence,
        priority_score=priority_score(peak.exposure_percent, duration, confidence, quality),
        quality=quality,
        is_recommended=(
            quality in (SunWindowQuality.EXCELLENT, SunWindowQuality.GOOD)
            and duration >= RECOMMENDED_MIN_DURATION
            and average >= RECOMMENDED_MIN_EXPOSURE
        ),
        description=_describe(quality, start, end, average),
        data_point_count=len(run),
    )


def find_sun_windows(
    patio_id: str,
    points: Sequence[TimelinePoint],
    interval: timedelta,
    config: EngineConfig | None = None,
) -> list[SunWindow]:
    """Collapse runs of Sunny points into windows, dropping short ones.

    A window ends one interval after its last sunny point, or at the final
    point when the run reaches the end of the series.
    """
    cfg = config or EngineConfig()
    min_duration = timedelta(minutes=cfg.min_sun_window_minutes)
    if not points:
        return []

    last_timestamp = points[-1].timestamp
    windows: list[SunWindow] = []
    run: list[TimelinePoint] = []

    def close() -> None:
        if not run:
            return
        end = min(run[-1].timestamp + interval, last_timestamp)
        if end - run[0].timestamp >= min_duration:
            windows.append(_build_window(patio_id, run, end))
        run.clear()

    for point in points:
        if point.state == ExposureState.SUNNY:
            run.append(point)
        else:
            close()
    close()
    return windows


def rank_sun_windows(windows: Sequence[SunWindow], max_windows: int = DEFAULT_MAX_WINDOWS) -> list[SunWindow]:
    """Best windows first: by priority, then by average exposure."""
    ranked = sorted(windows, key=lambda w: (w.priority_score, w.average_exposure), reverse=True)
    return ranked[:max_windows]


def summarize(timeline: Timeline) -> TimelineSummary:
    """Aggregate exposure and time-in-state over a timeline."""
    points = timeline.points
    if not points:
        return TimelineSummary(
            average_exposure=0.0,
            min_exposure=0.0,
            max_exposure=0.0,
            sunny_minutes=0.0,
            partial_minutes=0.0,
            shaded_minutes=0.0,
            average_confidence=0.0,
        )

    step_minutes = timeline.interval.total_seconds() / 60
    exposures = [p.exposure_percent for p in points]

    def minutes_in(state: ExposureState) -> float:
        return sum(1 for p in points if p.state == state) * step_minutes

    return TimelineSummary(
        average_exposure=sum(exposures) / len(exposures),
        min_exposure=min(exposures),
        max_exposure=max(exposures),
        sunny_minutes=minutes_in(ExposureState.SUNNY),
        partial_minutes=minutes_in(ExposureState.PARTIAL),
        shaded_minutes=minutes_in(ExposureState.SHADED),
        average_confidence=timeline.average_confidence,
    )
