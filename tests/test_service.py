"""
Tests for the exposure service and geometry collaborators.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from unittest.mock import Mock

import pytest

from patio_sun.config import EngineConfig
from patio_sun.errors import InvalidTimeRangeError, PatioNotFoundError
from patio_sun.geometry import rectangle
from patio_sun.schemas import (
    Building,
    ExposureState,
    GeoPoint,
    GeoPolygon,
    Patio,
    PointSource,
    PrecomputationStatus,
    WeatherSample,
)
from patio_sun.service import SunExposureService
from patio_sun.store import DataStore
from patio_sun.venues import InMemoryGeometryStore, geometry_version, load_geometry, save_geometry
from patio_sun.weather import StaticWeatherSource

CENTER = GeoPoint(lon=11.9746, lat=57.7089)
NOON = datetime(2026, 6, 21, 11, 0, tzinfo=UTC)
BOWTIE = GeoPolygon(exterior=((11.97, 57.70), (11.98, 57.71), (11.98, 57.70), (11.97, 57.71), (11.97, 57.70)))


def geometry() -> InMemoryGeometryStore:
    return InMemoryGeometryStore(
        patios=[
            Patio(id="open", footprint=rectangle(CENTER, 10, 10)),
            Patio(id="courtyard", footprint=rectangle(CENTER, 6, 6, east_m=100)),
            Patio(id="broken", footprint=BOWTIE),
        ],
        buildings=[
            # Tall block right next to the courtyard on its south side
            Building(id="tower", footprint=rectangle(CENTER, 30, 10, east_m=100, north_m=-9), height_m=60.0),
        ],
    )


def clear_sky(hours: int = 12) -> StaticWeatherSource:
    return StaticWeatherSource(
        WeatherSample(
            timestamp=NOON + timedelta(hours=h),
            cloud_cover_pct=5.0,
            is_forecast=True,
            source="met.no",
            location=CENTER,
        )
        for h in range(-2, hours)
    )


class TestCalculateExposure:
    """Test single-patio exposure."""

    def test_open_patio_at_noon(self) -> None:
        service = SunExposureService(geometry())
        result = service.calculate_exposure("open", NOON)
        assert result.state == ExposureState.SUNNY
        assert result.patio_id == "open"

    def test_shaded_courtyard(self) -> None:
        service = SunExposureService(geometry())
        result = service.calculate_exposure("courtyard", NOON)
        assert result.state == ExposureState.SHADED
        assert [s.building_id for s in result.shadows] == ["tower"]

    def test_unknown_patio(self) -> None:
        with pytest.raises(PatioNotFoundError) as exc_info:
            SunExposureService(geometry()).calculate_exposure("nowhere", NOON)
        assert exc_info.value.patio_id == "nowhere"
        assert str(exc_info.value) == "Patio not found: nowhere"

    def test_weather_raises_confidence_cap(self) -> None:
        without = SunExposureService(geometry()).calculate_exposure("open", NOON)
        with_weather = SunExposureService(geometry(), weather=clear_sky()).calculate_exposure("open", NOON)
        assert without.confidence <= 60.0
        assert with_weather.weather is not None
        assert with_weather.confidence > without.confidence

    def test_weather_failure_tolerated(self) -> None:
        source = Mock()
        source.samples_for.side_effect = ConnectionError("provider down")
        result = SunExposureService(geometry(), weather=source).calculate_exposure("open", NOON)
        assert result.weather is None
        assert result.confidence <= 60.0

    def test_cached_result_reused(self) -> None:
        service = SunExposureService(geometry())
        service.generate_timeline("open", NOON, NOON + timedelta(minutes=10))
        cached = service.cache.get("open", NOON)
        assert cached is not None
        assert service.calculate_exposure("open", NOON) == cached.result

    def test_new_building_invalidates_cached_result(self) -> None:
        """A building added after caching shades the patio on the next request."""
        service = SunExposureService(geometry())
        service.generate_timeline("open", NOON, NOON + timedelta(minutes=10))
        assert service.calculate_exposure("open", NOON).state == ExposureState.SUNNY

        service.geometry.add_building(
            Building(id="tower2", footprint=rectangle(CENTER, 30, 10, north_m=-11), height_m=60.0)
        )
        result = service.calculate_exposure("open", NOON)
        assert result.state == ExposureState.SHADED
        assert result == SunExposureService(service.geometry).calculate_exposure("open", NOON)

        timeline = service.generate_timeline("open", NOON, NOON + timedelta(minutes=10))
        assert {p.source for p in timeline.points} == {PointSource.CALCULATED}
        assert {p.state for p in timeline.points} == {ExposureState.SHADED}

    def test_threshold_change_not_served_from_cache(self) -> None:
        """Results cached under other state thresholds are recomputed."""
        store = geometry()
        first = SunExposureService(store)
        first.generate_timeline("open", NOON, NOON + timedelta(minutes=10))

        strict_config = EngineConfig(sunny_threshold=100.0, partial_threshold=100.0)
        strict = SunExposureService(store, cache=first.cache, config=strict_config)
        timeline = strict.generate_timeline("open", NOON, NOON + timedelta(minutes=10))
        assert {p.source for p in timeline.points} == {PointSource.CALCULATED}

    def test_forecast_lead_measured_from_issue_time(self) -> None:
        """A sample issued long before it applies keeps its long-range penalty."""
        sample = WeatherSample(
            timestamp=NOON,
            cloud_cover_pct=5.0,
            is_forecast=True,
            location=CENTER,
            issued_at=NOON - timedelta(hours=30),
        )
        service = SunExposureService(geometry(), weather=StaticWeatherSource([sample]), clock=lambda: NOON)
        (processed,) = service.fetch_weather(CENTER, NOON, NOON)
        assert processed.confidence_level == pytest.approx(0.6)

        fresh = sample.model_copy(update={"issued_at": None})
        service = SunExposureService(geometry(), weather=StaticWeatherSource([fresh]), clock=lambda: NOON)
        (processed,) = service.fetch_weather(CENTER, NOON, NOON)
        assert processed.confidence_level == pytest.approx(0.7)


class TestBatch:
    """Test batch exposure."""

    def test_order_preserved_and_bad_skipped(self) -> None:
        service = SunExposureService(geometry())
        results = service.calculate_exposure_batch(["courtyard", "nowhere", "broken", "open"], NOON)
        assert [r.patio_id for r in results] == ["courtyard", "open"]

    def test_weather_fetched_once(self) -> None:
        source = Mock(wraps=clear_sky())
        service = SunExposureService(geometry(), weather=source)
        results = service.calculate_exposure_batch(["open", "courtyard"], NOON)
        assert len(results) == 2
        assert source.samples_for.call_count == 1
        assert all(r.weather is not None for r in results)

    def test_all_unknown(self) -> None:
        assert SunExposureService(geometry()).calculate_exposure_batch(["x", "y"], NOON) == []


class TestTimelines:
    """Test timeline and window operations."""

    def test_generate_timeline(self) -> None:
        service = SunExposureService(geometry())
        timeline = service.generate_timeline("open", NOON, NOON + timedelta(hours=2))
        assert len(timeline.points) == 13
        assert timeline.patio_id == "open"

    def test_second_timeline_from_cache(self) -> None:
        service = SunExposureService(geometry())
        service.generate_timeline("open", NOON, NOON + timedelta(hours=1))
        again = service.generate_timeline("open", NOON, NOON + timedelta(hours=1))
        assert {p.source for p in again.points} == {PointSource.PRECOMPUTED}

    def test_invalid_range_checked_before_io(self) -> None:
        source = Mock()
        service = SunExposureService(geometry(), weather=source)
        with pytest.raises(InvalidTimeRangeError):
            service.generate_timeline("open", NOON, NOON + timedelta(hours=72))
        source.samples_for.assert_not_called()

    def test_best_sun_windows(self) -> None:
        """An unobstructed patio on midsummer day is one long window."""
        service = SunExposureService(InMemoryGeometryStore([Patio(id="open", footprint=rectangle(CENTER, 10, 10))]))
        start = datetime(2026, 6, 21, 6, 0, tzinfo=UTC)
        windows = service.get_best_sun_windows("open", start, start + timedelta(hours=12))
        assert len(windows) == 1
        assert windows[0].start_time == start
        assert windows[0].end_time == start + timedelta(hours=12)

    def test_max_windows(self) -> None:
        service = SunExposureService(InMemoryGeometryStore([Patio(id="open", footprint=rectangle(CENTER, 10, 10))]))
        start = datetime(2026, 6, 21, 6, 0, tzinfo=UTC)
        assert service.get_best_sun_windows("open", start, start + timedelta(hours=12), max_windows=0) == []


class TestPrecomputeAndInvalidate:
    """Test precompute and cache invalidation."""

    def test_run_precomputation(self) -> None:
        service = SunExposureService(geometry())
        schedule = service.run_precomputation(date(2026, 6, 21))
        assert schedule.status == PrecomputationStatus.COMPLETED
        assert schedule.patios_total == 3
        assert list(schedule.failed_patios) == ["broken"]
        assert schedule.buckets_written == 2 * 73

    def test_precomputed_buckets_serve_timelines(self) -> None:
        service = SunExposureService(geometry())
        service.run_precomputation(date(2026, 6, 21))
        timeline = service.generate_timeline(
            "open", datetime(2026, 6, 21, 9, 0, tzinfo=UTC), datetime(2026, 6, 21, 10, 0, tzinfo=UTC)
        )
        assert timeline.precomputed_points_count == 7

    def test_invalidate_patio(self) -> None:
        service = SunExposureService(geometry())
        service.generate_timeline("open", NOON, NOON + timedelta(hours=1))
        assert service.invalidate_patio("open") == 7
        again = service.generate_timeline("open", NOON, NOON + timedelta(hours=1))
        assert {p.source for p in again.points} == {PointSource.CALCULATED}


class TestFromStore:
    """Test wiring the service to the DataStore."""

    def test_round_trip(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        save_geometry(store, geometry())
        service = SunExposureService.from_store(store, EngineConfig())
        result = service.calculate_exposure("courtyard", NOON)
        assert result.state == ExposureState.SHADED

    def test_missing_geometry(self, tmp_path: Path) -> None:
        service = SunExposureService.from_store(DataStore(tmp_path))
        with pytest.raises(PatioNotFoundError):
            service.calculate_exposure("open", NOON)


class TestGeometryStore:
    """Test the in-memory geometry collaborator."""

    def test_list_sorted(self) -> None:
        assert [p.id for p in geometry().list_patios()] == ["broken", "courtyard", "open"]

    def test_buildings_near(self) -> None:
        store = geometry()
        courtyard = store.get_patio("courtyard")
        open_patio = store.get_patio("open")
        assert courtyard is not None
        assert open_patio is not None
        assert [b.id for b in store.buildings_near(courtyard, 200.0)] == ["tower"]
        assert store.buildings_near(open_patio, 50.0) == []

    def test_put_patio_bumps_version(self) -> None:
        store = geometry()
        moved = Patio(id="open", footprint=rectangle(CENTER, 12, 12))
        assert store.put_patio(moved).version == 2
        renamed = Patio(id="open", footprint=rectangle(CENTER, 12, 12), name="Renamed")
        assert store.put_patio(renamed).version == 2
        assert store.put_patio(Patio(id="new", footprint=rectangle(CENTER, 4, 4))).version == 1

    def test_add_building_bumps_version(self) -> None:
        store = geometry()
        taller = Building(id="tower", footprint=rectangle(CENTER, 30, 10, east_m=100, north_m=-9), height_m=80.0)
        assert store.add_building(taller).version == 2
        assert store.add_building(taller).version == 2

    def test_geometry_version_tracks_buildings(self) -> None:
        store = geometry()
        courtyard = store.get_patio("courtyard")
        assert courtyard is not None
        before = geometry_version(courtyard, store.buildings_near(courtyard, 200.0))
        assert geometry_version(courtyard, store.buildings_near(courtyard, 200.0)) == before

        store.add_building(
            Building(id="tower", footprint=rectangle(CENTER, 30, 10, east_m=100, north_m=-9), height_m=20.0)
        )
        assert geometry_version(courtyard, store.buildings_near(courtyard, 200.0)) != before
        assert geometry_version(courtyard) != before

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        save_geometry(store, geometry())
        loaded = load_geometry(store)
        assert [p.id for p in loaded.list_patios()] == ["broken", "courtyard", "open"]
        assert loaded.list_buildings()[0].height_m == 60.0

    def test_load_missing(self, tmp_path: Path) -> None:
        assert load_geometry(DataStore(tmp_path)).list_patios() == []
