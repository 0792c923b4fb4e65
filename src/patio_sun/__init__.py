"""Patio Sun - sun, shadow and weather exposure for outdoor seating.

Architecture::

    solar.py        Sun position (NOAA series) and sunrise/sunset
    geometry.py     Polygon validation, local metric frame
    shadows.py      2.5D building shadows (footprint swept along the sun vector)
    weather/        Sample processing, spatial/temporal interpolation, Open-Meteo parsing
    confidence.py   Geometry x weather confidence blend with caps
    exposure.py     Pure engine: patio + buildings + time (+ weather) -> result
    timeline.py     Timelines from cache/interpolation/calculation, sun windows
    cache.py        Exposure cache (in-memory and DataStore-backed)
    precompute.py   Resumable, cancellable daily precomputation
    service.py      Public operations wired to collaborators
    store.py        Tiered JSON store with TTL envelopes
    flows/          Prefect orchestration (precompute, reap)

Data flow: geometry + weather -> engine -> cache (precompute) -> timelines/windows
"""

__version__ = "0.1.0"

from patio_sun.config import EngineConfig, Settings
from patio_sun.exposure import SunExposureEngine
from patio_sun.service import SunExposureService

__all__ = ["EngineConfig", "Settings", "SunExposureEngine", "SunExposureService", "__version__"]
