"""
Tests for polygon validation and the local metric frame.
"""

from __future__ import annotations

import pytest
from shapely.geometry import MultiPolygon, Polygon

from patio_sun import geometry
from patio_sun.errors import InvalidGeometryError
from patio_sun.schemas import GeoPoint, GeoPolygon

CENTER = GeoPoint(lon=11.9746, lat=57.7089)


class TestHaversine:
    """Test great-circle distance."""

    def test_same_point(self) -> None:
        assert geometry.haversine_m(CENTER, CENTER) == 0.0

    def test_one_degree_of_latitude(self) -> None:
        north = GeoPoint(lon=CENTER.lon, lat=CENTER.lat + 1)
        assert geometry.haversine_m(CENTER, north) == pytest.approx(111_195, rel=1e-3)


class TestValidatePolygon:
    """Test footprint validation."""

    def test_valid_rectangle(self) -> None:
        shape = geometry.validate_polygon(geometry.rectangle(CENTER, 10, 10))
        assert isinstance(shape, Polygon)
        assert shape.is_valid

    def test_too_few_positions(self) -> None:
        polygon = GeoPolygon(exterior=((0.0, 0.0), (1.0, 0.0), (0.0, 0.0)))
        with pytest.raises(InvalidGeometryError, match="at least 4"):
            geometry.validate_polygon(polygon, "p1")

    def test_open_ring(self) -> None:
        polygon = GeoPolygon(exterior=((0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)))
        with pytest.raises(InvalidGeometryError, match="not closed"):
            geometry.validate_polygon(polygon)

    def test_out_of_range(self) -> None:
        polygon = GeoPolygon(exterior=((0.0, 0.0), (190.0, 0.0), (190.0, 1.0), (0.0, 0.0)))
        with pytest.raises(InvalidGeometryError, match="out-of-range"):
            geometry.validate_polygon(polygon)

    def test_non_finite(self) -> None:
        polygon = GeoPolygon(exterior=((0.0, 0.0), (float("nan"), 0.0), (1.0, 1.0), (0.0, 0.0)))
        with pytest.raises(InvalidGeometryError, match="non-finite"):
            geometry.validate_polygon(polygon)

    def test_self_intersecting(self) -> None:
        """A bow-tie ring is rejected with shapely's explanation."""
        bowtie = GeoPolygon(exterior=((0.0, 0.0), (1.0, 1.0), (1.0, 0.0), (0.0, 1.0), (0.0, 0.0)))
        with pytest.raises(InvalidGeometryError, match="Self-intersection"):
            geometry.validate_polygon(bowtie)

    def test_error_carries_feature_id(self) -> None:
        polygon = GeoPolygon(exterior=((0.0, 0.0), (1.0, 0.0), (0.0, 0.0)))
        with pytest.raises(InvalidGeometryError) as exc_info:
            geometry.validate_polygon(polygon, "terrace-9")
        assert exc_info.value.feature_id == "terrace-9"
        assert "terrace-9" in str(exc_info.value)

    def test_is_value_error(self) -> None:
        polygon = GeoPolygon(exterior=((0.0, 0.0), (1.0, 0.0), (0.0, 0.0)))
        with pytest.raises(ValueError):
            geometry.validate_polygon(polygon)


class TestLocalFrame:
    """Test the equirectangular local frame."""

    def test_origin_maps_to_zero(self) -> None:
        frame = geometry.LocalFrame(CENTER)
        assert frame.to_xy(CENTER.lon, CENTER.lat) == (0.0, 0.0)

    def test_round_trip(self) -> None:
        frame = geometry.LocalFrame(CENTER)
        lon, lat = frame.to_lonlat(120.0, -45.0)
        x, y = frame.to_xy(lon, lat)
        assert x == pytest.approx(120.0)
        assert y == pytest.approx(-45.0)

    def test_north_is_positive_y(self) -> None:
        frame = geometry.LocalFrame(CENTER)
        _, y = frame.to_xy(CENTER.lon, CENTER.lat + 0.001)
        assert y > 0

    def test_rectangle_in_frame(self) -> None:
        """A rectangle offset 20 m east lands at x in [15, 25]."""
        frame = geometry.LocalFrame(CENTER)
        shape = frame.to_local(geometry.rectangle(CENTER, 10, 4, east_m=20))
        minx, miny, maxx, maxy = shape.bounds
        assert minx == pytest.approx(15.0)
        assert maxx == pytest.approx(25.0)
        assert miny == pytest.approx(-2.0)
        assert maxy == pytest.approx(2.0)

    def test_to_geo_multipolygon_uses_hull(self) -> None:
        frame = geometry.LocalFrame(CENTER)
        parts = MultiPolygon(
            [
                Polygon([(0, 0), (1, 0), (1, 1), (0, 1)]),
                Polygon([(5, 0), (6, 0), (6, 1), (5, 1)]),
            ]
        )
        result = geometry.LocalFrame(CENTER).to_local(frame.to_geo(parts))
        assert result.area == pytest.approx(6.0, rel=1e-6)


class TestArea:
    """Test planar area."""

    def test_rectangle_area(self) -> None:
        assert geometry.area_sqm(geometry.rectangle(CENTER, 10, 20)) == pytest.approx(200.0, rel=1e-6)

    def test_centroid_of_centered_rectangle(self) -> None:
        point = geometry.centroid(geometry.rectangle(CENTER, 10, 20))
        assert point.lon == pytest.approx(CENTER.lon)
        assert point.lat == pytest.approx(CENTER.lat)
