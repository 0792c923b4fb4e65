"""Weather normalization and interpolation.

    processing.py      WeatherSample -> ProcessedWeather (condition, blocking, trust)
    interpolation.py   Spatial IDW / nearest neighbour and temporal lerp
    open_meteo.py      Open-Meteo hourly payload -> WeatherSample
    sources.py         WeatherSource collaborators (static list, data store)
"""

from patio_sun.weather.interpolation import interpolate_spatial, interpolate_temporal, weather_at
from patio_sun.weather.open_meteo import samples_from_open_meteo
from patio_sun.weather.processing import process_sample, process_samples
from patio_sun.weather.sources import StaticWeatherSource, StoreWeatherSource, WeatherSource

__all__ = [
    "StaticWeatherSource",
    "StoreWeatherSource",
    "WeatherSource",
    "interpolate_spatial",
    "interpolate_temporal",
    "process_sample",
    "process_samples",
    "samples_from_open_meteo",
    "weather_at",
]
