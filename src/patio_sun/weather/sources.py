"""Weather collaborators the service reads samples from."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

from patio_sun.schemas import GeoPoint, WeatherSample
from patio_sun.store import DataStore
from patio_sun.weather.open_meteo import samples_from_open_meteo

logger = logging.getLogger(__name__)

WEATHER_PATH = Path("live/weather.json")

# Extra time either side of a request so the range can be bracketed
PADDING = timedelta(hours=1)


class WeatherSource(Protocol):
    """Anything that can hand back raw samples around a place and time range."""

    def samples_for(self, location: GeoPoint, start: datetime, end: datetime) -> list[WeatherSample]: ...


class StaticWeatherSource:
    """Serves a fixed list of samples."""

    def __init__(self, samples: Iterable[WeatherSample]) -> None:
        self.samples = sorted(samples, key=lambda s: s.timestamp)

    def samples_for(self, location: GeoPoint, start: datetime, end: datetime) -> list[WeatherSample]:
        return [s for s in self.samples if start - PADDING <= s.timestamp <= end + PADDING]


class StoreWeatherSource:
    """Reads the Open-Meteo payload cached in the data store.

    A missing file yields no samples. The payload is re-read on every call,
    so a refreshed file is picked up without restarting.
    """

    def __init__(self, store: DataStore, path: Path = WEATHER_PATH) -> None:
        self.store = store
        self.path = path

    def samples_for(self, location: GeoPoint, start: datetime, end: datetime) -> list[WeatherSample]:
        envelope = self.store.read_raw(self.path)
        if envelope is None:
            logger.info("No cached weather at %s", self.path)
            return []

        meta = envelope.get("meta", {})
        issued_at = datetime.fromisoformat(meta["fetched_at"]) if "fetched_at" in meta else None
        samples = samples_from_open_meteo(envelope.get("data", {}), issued_at=issued_at)
        return StaticWeatherSource(samples).samples_for(location, start, end)
