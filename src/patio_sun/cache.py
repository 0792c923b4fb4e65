"""
Exposure cache keyed by ``(patio_id, date, time bucket)``.

Two backends share the :class:`ExposureCache` protocol:
  - InMemoryExposureCache: dict guarded by a lock, for a single process
  - StoreExposureCache: one JSON envelope per bucket in the DataStore
    under ``derived/exposure/{quoted patio id}/{date}/{HHMM}.json``

Writes for the same key overwrite; entries are immutable, so concurrent
writers can only replace an entry with an equivalent one.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import NamedTuple, Protocol
from urllib.parse import quote

from patio_sun.schemas import CachedExposure, SunExposureResult
from patio_sun.solar import to_utc
from patio_sun.store import DataStore

logger = logging.getLogger(__name__)

DEFAULT_RESOLUTION = timedelta(minutes=10)
EXPOSURE_DIR = Path("derived/exposure")
SOURCE = "patio-sun"


class CacheKey(NamedTuple):
    patio_id: str
    day: date
    minute_of_day: int


def bucket_start(timestamp: datetime, resolution: timedelta = DEFAULT_RESOLUTION) -> datetime:
    """Start of the bucket containing ``timestamp`` (buckets align to UTC midnight)."""
    ts = to_utc(timestamp)
    midnight = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    steps = (ts - midnight) // resolution
    return midnight + steps * resolution


def is_bucket_aligned(timestamp: datetime, resolution: timedelta = DEFAULT_RESOLUTION) -> bool:
    return bucket_start(timestamp, resolution) == to_utc(timestamp)


def cache_key(patio_id: str, timestamp: datetime, resolution: timedelta = DEFAULT_RESOLUTION) -> CacheKey:
    start = bucket_start(timestamp, resolution)
    return CacheKey(patio_id, start.date(), start.hour * 60 + start.minute)


class ExposureCache(Protocol):
    """Storage for precomputed exposure results."""

    resolution: timedelta

    def get(self, patio_id: str, timestamp: datetime) -> CachedExposure | None:
        """Entry for the bucket containing ``timestamp``, usable or not."""
        ...

    def put(self, entry: CachedExposure) -> None: ...

    def mark_stale(self, patio_id: str, from_date: date | None = None) -> int:
        """Flag a patio's entries (optionally from a date on) as stale. Returns the count."""
        ...

    def evict(self, now: datetime) -> int:
        """Drop expired and stale entries. Returns the count."""
        ...


class InMemoryExposureCache:
    """Process-local cache. The lock is held only for single dict operations."""

    def __init__(self, resolution: timedelta = DEFAULT_RESOLUTION) -> None:
        self.resolution = resolution
        self._entries: dict[CacheKey, CachedExposure] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, patio_id: str, timestamp: datetime) -> CachedExposure | None:
        key = cache_key(patio_id, timestamp, self.resolution)
        with self._lock:
            return self._entries.get(key)

    def put(self, entry: CachedExposure) -> None:
        key = cache_key(entry.patio_id, entry.timestamp, self.resolution)
        with self._lock:
            self._entries[key] = entry

    def mark_stale(self, patio_id: str, from_date: date | None = None) -> int:
        with self._lock:
            keys = [
                k
                for k, e in self._entries.items()
                if k.patio_id == patio_id and (from_date is None or k.day >= from_date) and not e.is_stale
            ]
            for k in keys:
                self._entries[k] = self._entries[k].model_copy(update={"is_stale": True})
        return len(keys)

    def evict(self, now: datetime) -> int:
        with self._lock:
            doomed = [k for k, e in self._entries.items() if e.is_stale or e.is_expired(now)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)


def patio_dir_name(patio_id: str) -> str:
    """Percent-encoded directory name for a patio id. Distinct ids never collide."""
    return quote(patio_id, safe="").replace(".", "%2E")


class StoreExposureCache:
    """File-backed cache on top of :class:`DataStore` envelopes.

    Each bucket is its own file, so writers for different keys never
    contend and a crashed run leaves every completed bucket readable.
    """

    def __init__(self, store: DataStore, resolution: timedelta = DEFAULT_RESOLUTION) -> None:
        self.store = store
        self.resolution = resolution

    def path_for(self, key: CacheKey) -> Path:
        hhmm = f"{key.minute_of_day // 60:02d}{key.minute_of_day % 60:02d}"
        return EXPOSURE_DIR / patio_dir_name(key.patio_id) / key.day.isoformat() / f"{hhmm}.json"

    def get(self, patio_id: str, timestamp: datetime) -> CachedExposure | None:
        data = self.store.read(self.path_for(cache_key(patio_id, timestamp, self.resolution)))
        if data is None:
            return None
        entry = CachedExposure.model_validate(data)
        if entry.patio_id != patio_id:
            logger.warning("Ignoring cached bucket for %s found under patio %s", entry.patio_id, patio_id)
            return None
        return entry

    def put(self, entry: CachedExposure) -> None:
        self._write(self.path_for(cache_key(entry.patio_id, entry.timestamp, self.resolution)), entry)

    def _write(self, path: Path, entry: CachedExposure) -> None:
        self.store.write(
            path,
            entry.model_dump(mode="json"),
            source=SOURCE,
            valid_until=entry.expires_at,
            patio_id=entry.patio_id,
            computation_version=entry.computation_version,
            geometry_version=entry.geometry_version,
        )

    def _entries(self, directory: Path) -> list[tuple[Path, CachedExposure]]:
        found = []
        for path in self.store.iter_files(directory):
            data = self.store.read(path)
            if data is not None:
                found.append((path, CachedExposure.model_validate(data)))
        return found

    def mark_stale(self, patio_id: str, from_date: date | None = None) -> int:
        marked = 0
        for path, entry in self._entries(EXPOSURE_DIR / patio_dir_name(patio_id)):
            if entry.is_stale or (from_date is not None and entry.timestamp.date() < from_date):
                continue
            self._write(path, entry.model_copy(update={"is_stale": True}))
            marked += 1
        logger.info("Marked %d cached buckets stale for patio %s", marked, patio_id)
        return marked

    def evict(self, now: datetime) -> int:
        evicted = 0
        for path, entry in self._entries(EXPOSURE_DIR):
            if (entry.is_stale or entry.is_expired(now)) and self.store.delete(path):
                evicted += 1
        logger.info("Evicted %d cached buckets", evicted)
        return evicted


def new_entry(
    result: SunExposureResult,
    *,
    now: datetime,
    ttl: timedelta,
    computation_version: str,
    geometry_version: str,
) -> CachedExposure:
    """Wrap a freshly computed result for caching."""
    computed_at = to_utc(now)
    return CachedExposure(
        result=result,
        computed_at=computed_at,
        expires_at=computed_at + ttl,
        computation_version=computation_version,
        geometry_version=geometry_version,
    )
