"""
Prefect flows for precomputing and reaping exposure buckets.

Precomputes today and the next two days for every patio in
``reference/geometry.json`` and writes the buckets under
``derived/exposure/``. Reruns skip buckets that are still usable, so a
crashed run can simply be started again.

Run locally:
    python -m patio_sun.flows.precompute

Run with Prefect dashboard:
    prefect server start &
    python -m patio_sun.flows.precompute
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

from prefect import flow, task

from patio_sun.config import get_settings
from patio_sun.service import SunExposureService
from patio_sun.store import DataStore

# Data store with tiered directories
store = DataStore(Path("data"))


def build_service() -> SunExposureService:
    """Service wired to the module-level store and current settings."""
    return SunExposureService.from_store(store, get_settings().engine_config())


@task(name="precompute-day", retries=1, retry_delay_seconds=5)
def precompute_day(target_date: date, force: bool = False) -> dict[str, Any]:
    """Precompute one date and return its schedule."""
    schedule = build_service().run_precomputation(target_date, force=force)
    return schedule.model_dump(mode="json")


@task(name="reap-cache")
def reap(now: datetime | None = None) -> int:
    """Evict expired and stale buckets."""
    return build_service().runner.reap(now)


@flow(name="precompute-exposure", log_prints=True)
def precompute_all(start_date: date | None = None, days: int | None = None, force: bool = False) -> dict[str, Any]:
    """
    Precompute exposure for a run of days.

    Each day is its own task so Prefect shows per-day status and retries.
    """
    first = start_date or datetime.now(UTC).date()
    count = days or get_settings().engine_config().precompute_days
    results: dict[str, Any] = {}

    for offset in range(count):
        target = first + timedelta(days=offset)
        print(f"Precomputing exposure for {target.isoformat()}...")
        schedule = precompute_day(target, force=force)
        failed = len(schedule["failed_patios"])
        print(
            f"{target.isoformat()}: {schedule['status']}, "
            f"{schedule['patios_processed']}/{schedule['patios_total']} patios, "
            f"{schedule['buckets_written']} written, {schedule['buckets_skipped']} skipped, {failed} failed"
        )
        results[target.isoformat()] = schedule
        if schedule["status"] == "cancelled":
            print("Run cancelled, stopping.")
            break

    return results


@flow(name="reap-exposure-cache", log_prints=True)
def reap_cache() -> int:
    """Remove expired and stale buckets from the store."""
    evicted = reap()
    print(f"Evicted {evicted} cached buckets")
    return evicted


if __name__ == "__main__":
    result = precompute_all()
    print(f"Flow complete: {list(result)}")
