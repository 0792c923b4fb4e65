"""
Shadow projection for extruded building footprints.

A building of height ``h`` under a sun at elevation ``e`` casts a shadow of
length ``h / tan(e)`` pointing away from the sun. The ground shadow of a
prism is the footprint swept along that offset: the union of the footprint,
its translated copy and the quadrilateral traced by every footprint edge.
"""

from __future__ import annotations

import logging
import math

from shapely.geometry import Polygon
from shapely.ops import unary_union

from patio_sun.config import EngineConfig
from patio_sun.geometry import LocalFrame
from patio_sun.schemas import Building, GeoPolygon, HeightSource, ShadowProjection, SolarPosition

logger = logging.getLogger(__name__)

# Base confidence per height source. Admin overrides are hand-entered
# estimates and score below heuristics.
HEIGHT_SOURCE_CONFIDENCE: dict[HeightSource, float] = {
    HeightSource.SURVEYED: 1.0,
    HeightSource.EXTERNAL_DATASET: 0.85,
    HeightSource.HEURISTIC: 0.7,
    HeightSource.ADMIN_OVERRIDE: 0.6,
}

LOW_SUN_DEG = 10.0
MEDIUM_SUN_DEG = 20.0
LONG_SHADOW_M = 100.0
MEDIUM_SHADOW_M = 50.0


def shadow_length(height_m: float, elevation_deg: float) -> float:
    """Ground length of the shadow of a vertical edge. Zero when the sun is down."""
    if not elevation_deg > 0 or height_m <= 0:
        return 0.0
    return height_m / math.tan(math.radians(elevation_deg))


def shadow_direction(azimuth_deg: float) -> float:
    """Compass bearing the shadow points to (away from the sun)."""
    return (azimuth_deg + 180.0) % 360.0


def shadow_offset(length_m: float, azimuth_deg: float) -> tuple[float, float]:
    """East/north offset in metres of a shadow tip for the given sun azimuth."""
    bearing = math.radians(shadow_direction(azimuth_deg))
    return length_m * math.sin(bearing), length_m * math.cos(bearing)


def sweep(footprint: Polygon, dx: float, dy: float) -> Polygon:
    """Footprint swept along ``(dx, dy)`` in local metres."""
    coords = list(footprint.exterior.coords)
    parts: list[Polygon] = [footprint, Polygon([(x + dx, y + dy) for x, y, *_ in coords])]
    for (x1, y1, *_), (x2, y2, *_) in zip(coords, coords[1:], strict=False):
        quad = Polygon([(x1, y1), (x2, y2), (x2 + dx, y2 + dy), (x1 + dx, y1 + dy)])
        if quad.area > 0:
            parts.append(quad)
    # Holes are roofed over; a courtyard does not let sun through the building
    return unary_union([Polygon(p.exterior) for p in parts])


def shadow_confidence(height_source: HeightSource, elevation_deg: float, length_m: float) -> float:
    """Confidence in a projected shadow, in (0, 1]."""
    confidence = 1.0
    if elevation_deg < LOW_SUN_DEG:
        confidence *= 0.7
    elif elevation_deg < MEDIUM_SUN_DEG:
        confidence *= 0.9

    if length_m > LONG_SHADOW_M:
        confidence *= 0.8
    elif length_m > MEDIUM_SHADOW_M:
        confidence *= 0.9

    confidence *= HEIGHT_SOURCE_CONFIDENCE.get(height_source, 0.6)
    return min(max(confidence, 1e-6), 1.0)


def project_local(
    building: Building,
    solar: SolarPosition,
    frame: LocalFrame,
    *,
    config: EngineConfig | None = None,
) -> tuple[ShadowProjection, Polygon] | None:
    """Project a building shadow and also return it in ``frame`` coordinates.

    Returns None when the sun is down, below the reliability threshold, or
    the building has no height.
    """
    cfg = config or EngineConfig()
    elevation = solar.elevation_deg
    if not elevation > 0 or elevation < cfg.reliable_elevation_deg or building.height_m <= 0:
        return None

    length = shadow_length(building.height_m, elevation)
    reach = min(length, cfg.max_shadow_distance_m)
    dx, dy = shadow_offset(reach, solar.azimuth_deg)

    footprint = frame.to_local(building.footprint)
    local_shadow = sweep(footprint, dx, dy)
    shadow_polygon = frame.to_geo(local_shadow)

    projection = ShadowProjection(
        building_id=building.id,
        source_polygon=building.footprint,
        height_m=building.height_m,
        shadow_length_m=length,
        shadow_polygon=shadow_polygon,
        confidence=shadow_confidence(building.height_source, elevation, length),
    )
    return projection, local_shadow


def project_shadow(
    building: Building,
    solar: SolarPosition,
    *,
    config: EngineConfig | None = None,
) -> ShadowProjection | None:
    """Ground shadow of ``building`` for the given sun position, or None."""
    frame = LocalFrame.around(building.footprint)
    projected = project_local(building, solar, frame, config=config)
    if projected is None:
        logger.debug("No shadow for building %s at elevation %.2f", building.id, solar.elevation_deg)
        return None
    return projected[0]


def shadow_coverage_percent(patio: GeoPolygon, shadow: GeoPolygon) -> float:
    """Share of the patio covered by the shadow, 0-100."""
    frame = LocalFrame.around(patio)
    patio_shape = frame.to_local(patio)
    shadow_shape = frame.to_local(shadow)
    if patio_shape.area <= 0:
        return 0.0
    if shadow_shape.contains(patio_shape):
        return 100.0
    if not shadow_shape.intersects(patio_shape):
        return 0.0
    covered = patio_shape.intersection(shadow_shape).area / patio_shape.area * 100.0
    return min(max(covered, 0.0), 100.0)
