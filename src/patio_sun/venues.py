"""
Patio and building geometry collaborators.

The engine only needs three lookups: one patio, all patios, and the
buildings around a patio. ``InMemoryGeometryStore`` answers them from memory
and can be loaded from (and saved to) the ``reference/`` tier of the
DataStore as a single JSON document::

    {"patios": [Patio, ...], "buildings": [Building, ...]}
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol

from patio_sun.geometry import LocalFrame
from patio_sun.schemas import Building, Patio
from patio_sun.store import DataStore

logger = logging.getLogger(__name__)

GEOMETRY_PATH = Path("reference/geometry.json")


class GeometryStore(Protocol):
    """Source of patio and building footprints."""

    def get_patio(self, patio_id: str) -> Patio | None: ...

    def list_patios(self) -> list[Patio]: ...

    def buildings_near(self, patio: Patio, radius_m: float) -> list[Building]: ...


class InMemoryGeometryStore:
    """Thread-safe geometry held in dicts."""

    def __init__(self, patios: Iterable[Patio] = (), buildings: Iterable[Building] = ()) -> None:
        self._patios = {p.id: p for p in patios}
        self._buildings = {b.id: b for b in buildings}
        self._lock = threading.Lock()

    def get_patio(self, patio_id: str) -> Patio | None:
        with self._lock:
            return self._patios.get(patio_id)

    def list_patios(self) -> list[Patio]:
        with self._lock:
            return sorted(self._patios.values(), key=lambda p: p.id)

    def list_buildings(self) -> list[Building]:
        with self._lock:
            return sorted(self._buildings.values(), key=lambda b: b.id)

    def add_building(self, building: Building) -> Building:
        """Insert a building, or replace one and bump its version if its shape changed."""
        with self._lock:
            existing = self._buildings.get(building.id)
            if existing is not None:
                changed = (existing.footprint, existing.height_m) != (building.footprint, building.height_m)
                building = building.model_copy(
                    update={"version": existing.version + 1 if changed else existing.version}
                )
            self._buildings[building.id] = building
        return building

    def put_patio(self, patio: Patio) -> Patio:
        """Insert a patio, or replace one and bump its geometry version.

        Returns the stored patio, whose ``version`` tells caches whether
        results computed earlier are still valid.
        """
        with self._lock:
            existing = self._patios.get(patio.id)
            if existing is not None:
                changed = existing.footprint != patio.footprint
                patio = patio.model_copy(update={"version": existing.version + 1 if changed else existing.version})
            self._patios[patio.id] = patio
        return patio

    def buildings_near(self, patio: Patio, radius_m: float) -> list[Building]:
        """Buildings whose footprint lies within ``radius_m`` of the patio."""
        frame = LocalFrame.around(patio.footprint)
        patio_shape = frame.to_local(patio.footprint)
        with self._lock:
            candidates = list(self._buildings.values())
        return [b for b in candidates if frame.to_local(b.footprint).distance(patio_shape) <= radius_m]


def load_geometry(store: DataStore, path: Path = GEOMETRY_PATH) -> InMemoryGeometryStore:
    """Load patios and buildings from the data store. Missing file -> empty store."""
    data = store.read(path)
    if data is None:
        logger.warning("No geometry found at %s", path)
        return InMemoryGeometryStore()

    patios = [Patio.model_validate(p) for p in data.get("patios", [])]
    buildings = [Building.model_validate(b) for b in data.get("buildings", [])]
    logger.info("Loaded %d patios and %d buildings from %s", len(patios), len(buildings), path)
    return InMemoryGeometryStore(patios, buildings)


def save_geometry(store: DataStore, geometry: InMemoryGeometryStore, path: Path = GEOMETRY_PATH) -> Path:
    return store.write(
        path,
        {
            "patios": [p.model_dump(mode="json") for p in geometry.list_patios()],
            "buildings": [b.model_dump(mode="json") for b in geometry.list_buildings()],
        },
        source="patio-sun",
    )


def geometry_version(patio: Patio, buildings: Sequence[Building] = ()) -> str:
    """Fingerprint of everything that shapes a patio's exposure.

    Covers the patio footprint, height and version plus every nearby
    building, so cached results go out of date when any of them changes.
    """
    payload = {
        "patio": patio.model_dump(mode="json", include={"footprint", "height_m", "version"}),
        "buildings": [b.model_dump(mode="json") for b in sorted(buildings, key=lambda b: b.id)],
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()[:16]
