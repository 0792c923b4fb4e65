"""
Daily precomputation of exposure buckets.

For each target date the runner walks every patio over the daily window
(08:00-20:00 UTC, 10 minute buckets, both ends included) and writes the
results to the exposure cache. Runs are:

  - resumable: buckets that already hold a usable entry are skipped, so a
    crashed or cancelled run picks up where it stopped
  - cancellable: a cancel event or deadline is checked between patios
  - isolated: a failing patio is retried, then recorded on the schedule;
    it never aborts the rest of the run
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

from patio_sun.cache import ExposureCache, new_entry
from patio_sun.config import EngineConfig
from patio_sun.errors import InvalidGeometryError
from patio_sun.geometry import validate_polygon
from patio_sun.schemas import Patio, PrecomputationSchedule, PrecomputationStatus
from patio_sun.store import DataStore
from patio_sun.timeline import ExposureFn
from patio_sun.venues import GeometryStore, geometry_version

logger = logging.getLogger(__name__)

SCHEDULE_DIR = Path("derived/schedules")

# Builds the exposure function for a patio over [first slot, last slot]
ExposureFnFactory = Callable[[Patio, datetime, datetime], ExposureFn]
Clock = Callable[[], datetime]


def precompute_slots(target_date: date, config: EngineConfig | None = None) -> list[datetime]:
    """Bucket start times for one day's precompute window, inclusive."""
    cfg = config or EngineConfig()
    current = datetime.combine(target_date, cfg.precompute_start, tzinfo=UTC)
    last = datetime.combine(target_date, cfg.precompute_end, tzinfo=UTC)
    slots = []
    while current <= last:
        slots.append(current)
        current += cfg.resolution
    return slots


@dataclass
class PatioOutcome:
    """What precomputing one patio did."""

    patio_id: str
    written: int = 0
    skipped: int = 0
    retries: int = 0
    error: str | None = None
    cancelled: bool = False


class ScheduleRegistry:
    """Schedules by target date, optionally persisted to the DataStore."""

    def __init__(self, store: DataStore | None = None) -> None:
        self.store = store
        self._schedules: dict[date, PrecomputationSchedule] = {}
        self._lock = threading.Lock()

    def _path(self, target_date: date) -> Path:
        return SCHEDULE_DIR / f"{target_date.isoformat()}.json"

    def get(self, target_date: date) -> PrecomputationSchedule | None:
        with self._lock:
            schedule = self._schedules.get(target_date)
        if schedule is None and self.store is not None:
            data = self.store.read(self._path(target_date))
            if data is not None:
                schedule = PrecomputationSchedule.model_validate(data)
        return schedule

    def save(self, schedule: PrecomputationSchedule) -> None:
        with self._lock:
            self._schedules[schedule.target_date] = schedule
        if self.store is not None:
            self.store.write(
                self._path(schedule.target_date),
                schedule.model_dump(mode="json"),
                source="patio-sun",
                status=schedule.status.value,
            )


def _batches(items: Sequence[Patio], size: int) -> Iterator[Sequence[Patio]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class PrecomputationRunner:
    """Fills the exposure cache for upcoming days."""

    def __init__(
        self,
        geometry: GeometryStore,
        cache: ExposureCache,
        exposure_fn: ExposureFnFactory,
        config: EngineConfig | None = None,
        registry: ScheduleRegistry | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.geometry = geometry
        self.cache = cache
        self.exposure_fn = exposure_fn
        self.config = config or EngineConfig()
        self.registry = registry or ScheduleRegistry()
        self.clock = clock or (lambda: datetime.now(UTC))

    def _should_stop(self, cancel: threading.Event | None, deadline: datetime | None) -> bool:
        if cancel is not None and cancel.is_set():
            return True
        return deadline is not None and self.clock() >= deadline

    def geometry_version(self, patio: Patio) -> str:
        """Fingerprint of the patio and the buildings that can shade it."""
        validate_polygon(patio.footprint, patio.id)
        return geometry_version(patio, self.geometry.buildings_near(patio, self.config.max_shadow_distance_m))

    def _missing_slots(self, patio: Patio, slots: Sequence[datetime], version: str) -> list[datetime]:
        now = self.clock()
        policy = self.config.policy_version
        missing = []
        for ts in slots:
            entry = self.cache.get(patio.id, ts)
            if entry is None or entry.timestamp != ts or not entry.is_usable(now, version, policy):
                missing.append(ts)
        return missing

    def precompute_patio(
        self,
        patio: Patio,
        slots: Sequence[datetime],
        cancel: threading.Event | None = None,
        deadline: datetime | None = None,
    ) -> PatioOutcome:
        """Write every missing bucket for one patio, retrying on failure."""
        outcome = PatioOutcome(patio.id)
        if self._should_stop(cancel, deadline):
            outcome.cancelled = True
            return outcome

        attempts = self.config.max_patio_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                version = self.geometry_version(patio)
                missing = self._missing_slots(patio, slots, version)
                if attempt == 1:
                    outcome.skipped = len(slots) - len(missing)
                if not missing:
                    return outcome

                compute = self.exposure_fn(patio, slots[0], slots[-1])
                for ts in missing:
                    self.cache.put(
                        new_entry(
                            compute(ts),
                            now=self.clock(),
                            ttl=self.config.cache_ttl,
                            computation_version=self.config.policy_version,
                            geometry_version=version,
                        )
                    )
                    outcome.written += 1
                outcome.error = None
                return outcome
            except InvalidGeometryError as exc:
                # Retrying cannot fix a malformed footprint
                outcome.error = str(exc)
                logger.warning("Skipping patio %s: %s", patio.id, exc)
                return outcome
            except Exception as exc:
                outcome.error = f"{type(exc).__name__}: {exc}"
                if attempt < attempts:
                    outcome.retries += 1
                    logger.warning("Precompute failed for patio %s (attempt %d), retrying: %s", patio.id, attempt, exc)
                else:
                    logger.error("Precompute failed for patio %s after %d attempts: %s", patio.id, attempt, exc)
        return outcome

    def run(
        self,
        target_date: date,
        *,
        cancel: threading.Event | None = None,
        deadline: datetime | None = None,
        force: bool = False,
    ) -> PrecomputationSchedule:
        """Precompute one day for every patio.

        A date that already completed is returned as-is unless ``force`` is
        set. Per-patio failures are recorded in ``failed_patios``; the run is
        only marked failed when the patio list itself cannot be read.
        """
        existing = self.registry.get(target_date)
        if existing is not None and existing.status == PrecomputationStatus.COMPLETED and not force:
            logger.info("Precomputation for %s already completed", target_date)
            return existing

        now = self.clock()
        schedule = PrecomputationSchedule(
            target_date=target_date,
            scheduled_at=existing.scheduled_at if existing else now,
            status=PrecomputationStatus.RUNNING,
            started_at=now,
        )
        self.registry.save(schedule)

        try:
            patios = self.geometry.list_patios()
        except Exception as exc:
            logger.exception("Could not list patios for %s", target_date)
            schedule.status = PrecomputationStatus.FAILED
            schedule.error_message = str(exc)
            schedule.completed_at = self.clock()
            self.registry.save(schedule)
            return schedule

        schedule.patios_total = len(patios)
        slots = precompute_slots(target_date, self.config)
        cancelled = False

        workers = max(1, min(self.config.max_workers, len(patios)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for batch in _batches(patios, self.config.precompute_batch_size):
                if self._should_stop(cancel, deadline):
                    cancelled = True
                    break
                outcomes = pool.map(lambda p: self.precompute_patio(p, slots, cancel, deadline), batch)
                for outcome in outcomes:
                    if outcome.cancelled:
                        cancelled = True
                        continue
                    schedule.patios_processed += 1
                    schedule.buckets_written += outcome.written
                    schedule.buckets_skipped += outcome.skipped
                    schedule.retry_count += outcome.retries
                    if outcome.error is not None:
                        schedule.failed_patios[outcome.patio_id] = outcome.error
                self.registry.save(schedule)

        schedule.status = PrecomputationStatus.CANCELLED if cancelled else PrecomputationStatus.COMPLETED
        schedule.completed_at = self.clock()
        self.registry.save(schedule)
        logger.info(
            "Precomputation for %s %s: %d/%d patios, %d written, %d skipped, %d failed",
            target_date,
            schedule.status.value,
            schedule.patios_processed,
            schedule.patios_total,
            schedule.buckets_written,
            schedule.buckets_skipped,
            len(schedule.failed_patios),
        )
        return schedule

    def run_window(
        self,
        start_date: date | None = None,
        days: int | None = None,
        *,
        cancel: threading.Event | None = None,
        deadline: datetime | None = None,
    ) -> list[PrecomputationSchedule]:
        """Precompute ``days`` consecutive dates, today by default."""
        first = start_date or self.clock().date()
        count = days or self.config.precompute_days
        schedules = []
        for offset in range(count):
            schedule = self.run(first + timedelta(days=offset), cancel=cancel, deadline=deadline)
            schedules.append(schedule)
            if schedule.status == PrecomputationStatus.CANCELLED:
                break
        return schedules

    def reap(self, now: datetime | None = None) -> int:
        """Evict expired and stale cache entries."""
        return self.cache.evict(now or self.clock())
