"""
Polygon validation and local metric projection.

Footprints arrive as WGS84 lon/lat rings. Areas, offsets and distances are
computed in a local equirectangular frame (metres east/north of an origin),
which is accurate to well under a centimetre over the few hundred metres a
shadow can reach.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity

from patio_sun.errors import InvalidGeometryError
from patio_sun.schemas import Coordinate, GeoPoint, GeoPolygon, Ring

EARTH_RADIUS_M = 6_371_000.0
METRES_PER_DEGREE = EARTH_RADIUS_M * math.pi / 180.0

MIN_RING_POSITIONS = 4


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in metres between two points."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lon - a.lon)

    h = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    return EARTH_RADIUS_M * 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))


def _check_ring(ring: Ring, label: str, feature_id: str | None) -> None:
    if len(ring) < MIN_RING_POSITIONS:
        msg = f"{label} ring has {len(ring)} positions, need at least {MIN_RING_POSITIONS}"
        raise InvalidGeometryError(msg, feature_id)
    if ring[0] != ring[-1]:
        raise InvalidGeometryError(f"{label} ring is not closed", feature_id)
    for lon, lat in ring:
        if not (math.isfinite(lon) and math.isfinite(lat)):
            raise InvalidGeometryError(f"{label} ring has non-finite coordinates", feature_id)
        if not (-180 <= lon <= 180 and -90 <= lat <= 90):
            raise InvalidGeometryError(f"{label} ring has out-of-range coordinates", feature_id)


def validate_polygon(polygon: GeoPolygon, feature_id: str | None = None) -> Polygon:
    """Check a polygon and return it as a shapely geometry in lon/lat.

    Raises:
        InvalidGeometryError: If a ring is open, too short, out of range,
            self-intersecting, or the polygon has no area.
    """
    _check_ring(polygon.exterior, "exterior", feature_id)
    for hole in polygon.interiors:
        _check_ring(hole, "interior", feature_id)

    shape = Polygon(polygon.exterior, polygon.interiors)
    if not shape.is_valid:
        raise InvalidGeometryError(explain_validity(shape), feature_id)
    if shape.area <= 0:
        raise InvalidGeometryError("polygon has zero area", feature_id)
    return shape


def centroid(polygon: GeoPolygon) -> GeoPoint:
    """Centroid of the polygon's exterior in lon/lat."""
    point = Polygon(polygon.exterior, polygon.interiors).centroid
    return GeoPoint(lon=point.x, lat=point.y)


class LocalFrame:
    """Equirectangular projection to metres around an origin.

    ``x`` grows east and ``y`` grows north, so a compass bearing ``b`` maps to
    the unit vector ``(sin b, cos b)``.
    """

    def __init__(self, origin: GeoPoint) -> None:
        self.origin = origin
        self._kx = METRES_PER_DEGREE * math.cos(math.radians(origin.lat))
        self._ky = METRES_PER_DEGREE

    @classmethod
    def around(cls, polygon: GeoPolygon) -> LocalFrame:
        return cls(centroid(polygon))

    def to_xy(self, lon: float, lat: float) -> tuple[float, float]:
        return (lon - self.origin.lon) * self._kx, (lat - self.origin.lat) * self._ky

    def to_lonlat(self, x: float, y: float) -> Coordinate:
        return self.origin.lon + x / self._kx, self.origin.lat + y / self._ky

    def _ring_to_local(self, ring: Iterable[Coordinate]) -> list[tuple[float, float]]:
        return [self.to_xy(lon, lat) for lon, lat in ring]

    def _ring_to_geo(self, ring: Iterable[Sequence[float]]) -> Ring:
        return tuple(self.to_lonlat(x, y) for x, y, *_ in ring)

    def to_local(self, polygon: GeoPolygon) -> Polygon:
        """Project a WGS84 polygon into this frame."""
        return Polygon(
            self._ring_to_local(polygon.exterior),
            [self._ring_to_local(hole) for hole in polygon.interiors],
        )

    def to_geo(self, shape: BaseGeometry) -> GeoPolygon:
        """Project a local polygon back to WGS84.

        Multi-part shapes are replaced by their convex hull, so the result is
        always a single polygon.
        """
        if isinstance(shape, MultiPolygon):
            shape = shape.convex_hull
        if not isinstance(shape, Polygon):
            msg = f"cannot convert {shape.geom_type} to a polygon"
            raise InvalidGeometryError(msg)
        return GeoPolygon(
            exterior=self._ring_to_geo(shape.exterior.coords),
            interiors=tuple(self._ring_to_geo(hole.coords) for hole in shape.interiors),
        )


def area_sqm(polygon: GeoPolygon) -> float:
    """Planar area of a WGS84 polygon in square metres."""
    return LocalFrame.around(polygon).to_local(polygon).area


def rectangle(
    center: GeoPoint,
    width_m: float,
    depth_m: float,
    *,
    east_m: float = 0.0,
    north_m: float = 0.0,
) -> GeoPolygon:
    """Axis-aligned rectangle of ``width_m`` (east-west) by ``depth_m`` (north-south).

    The rectangle is centred ``east_m``/``north_m`` metres away from ``center``.
    Handy for fixtures and quick what-if calculations.
    """
    frame = LocalFrame(center)
    half_w, half_d = width_m / 2.0, depth_m / 2.0
    corners = [
        (east_m - half_w, north_m - half_d),
        (east_m + half_w, north_m - half_d),
        (east_m + half_w, north_m + half_d),
        (east_m - half_w, north_m + half_d),
    ]
    ring = tuple(frame.to_lonlat(x, y) for x, y in corners)
    return GeoPolygon(exterior=(*ring, ring[0]))
