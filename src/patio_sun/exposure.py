"""
Sun exposure engine.

Combines sun position, building shadows and weather into a single
:class:`SunExposureResult` for one patio at one instant. The engine holds
only its configuration, so one instance can be shared across threads.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from shapely.geometry import Polygon
from shapely.ops import unary_union

from patio_sun.confidence import score_confidence
from patio_sun.config import EngineConfig
from patio_sun.geometry import LocalFrame, validate_polygon
from patio_sun.schemas import (
    Building,
    ExposureState,
    Patio,
    ProcessedWeather,
    ShadowProjection,
    SolarPosition,
    SunExposureResult,
)
from patio_sun.shadows import project_local
from patio_sun.solar import solar_position, to_utc

logger = logging.getLogger(__name__)


def exposure_state(exposure_percent: float, config: EngineConfig | None = None) -> ExposureState:
    """Map an exposure percentage to Sunny/Partial/Shaded (inclusive lower bounds)."""
    cfg = config or EngineConfig()
    if exposure_percent >= cfg.sunny_threshold:
        return ExposureState.SUNNY
    if exposure_percent >= cfg.partial_threshold:
        return ExposureState.PARTIAL
    return ExposureState.SHADED


class SunExposureEngine:
    """Pure exposure calculator for a patio and its neighbouring buildings."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def cast_shadows(
        self,
        patio: Patio,
        buildings: Iterable[Building],
        solar: SolarPosition,
        frame: LocalFrame,
        patio_shape: Polygon,
    ) -> tuple[list[ShadowProjection], list[Polygon]]:
        """Shadows from ``buildings`` that fall on the patio.

        Buildings further than the maximum shadow distance are ignored. For
        raised patios only the part of a building above the patio counts.
        """
        floor = patio.height_m or 0.0
        projections: list[ShadowProjection] = []
        shapes: list[Polygon] = []

        for building in buildings:
            if building.height_m <= floor:
                continue
            footprint = frame.to_local(building.footprint)
            if footprint.distance(patio_shape) > self.config.max_shadow_distance_m:
                continue

            caster = building if floor == 0 else building.model_copy(update={"height_m": building.height_m - floor})
            projected = project_local(caster, solar, frame, config=self.config)
            if projected is None:
                continue
            projection, shape = projected
            if shape.intersects(patio_shape):
                projections.append(projection)
                shapes.append(shape)

        return projections, shapes

    def calculate(
        self,
        patio: Patio,
        buildings: Iterable[Building],
        timestamp: datetime,
        weather: ProcessedWeather | None = None,
    ) -> SunExposureResult:
        """Exposure of ``patio`` at ``timestamp``.

        Raises:
            InvalidGeometryError: If the patio or any building footprint is malformed.
        """
        ts = to_utc(timestamp)
        buildings = list(buildings)
        validate_polygon(patio.footprint, patio.id)
        for building in buildings:
            validate_polygon(building.footprint, building.id)

        frame = LocalFrame.around(patio.footprint)
        patio_shape = frame.to_local(patio.footprint)
        patio_area = patio_shape.area
        solar = solar_position(ts, frame.origin.lat, frame.origin.lon, config=self.config)

        shadows: list[ShadowProjection] = []
        if not solar.elevation_deg > 0 or solar.elevation_deg < self.config.reliable_elevation_deg:
            # Sun down, or too low to trust any shadow: the whole patio counts as shaded
            shaded_area = patio_area
        else:
            shadows, shapes = self.cast_shadows(patio, buildings, solar, frame, patio_shape)
            shaded_area = patio_shape.intersection(unary_union(shapes)).area if shapes else 0.0

        shaded_area = min(max(shaded_area, 0.0), patio_area)
        sunlit_area = patio_area - shaded_area
        exposure = min(max(sunlit_area / patio_area * 100.0, 0.0), 100.0)

        factors = score_confidence(
            patio,
            shadows,
            solar,
            weather,
            timestamp=ts,
            buildings={b.id: b for b in buildings},
            patio_area_sqm=patio_area,
        )
        logger.debug(
            "Patio %s at %s: %.1f%% sunlit, %d shadows, elevation %.2f",
            patio.id,
            ts.isoformat(),
            exposure,
            len(shadows),
            solar.elevation_deg,
        )

        return SunExposureResult(
            patio_id=patio.id,
            timestamp=ts,
            exposure_percent=exposure,
            state=exposure_state(exposure, self.config),
            confidence=round(factors.overall_confidence * 100.0, 1),
            sunlit_area_sqm=sunlit_area,
            shaded_area_sqm=shaded_area,
            solar_position=solar,
            shadows=tuple(shadows),
            confidence_breakdown=factors,
            weather=weather,
        )
