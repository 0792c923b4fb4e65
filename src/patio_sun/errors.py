"""Error types raised by the exposure engine.

Each exception carries the offending values as attributes so callers can
report them without parsing the message.

Example:
    try:
        result = service.calculate_exposure("terrace-1", when)
    except PatioNotFoundError as e:
        print(f"No patio with id {e.patio_id}")
    except InvalidGeometryError as e:
        print(f"Bad polygon for {e.feature_id}: {e.reason}")
"""

from __future__ import annotations

from datetime import datetime, timedelta


class ExposureError(Exception):
    """Base class for all patio-sun errors."""

    pass


class InvalidGeometryError(ExposureError, ValueError):
    """Raised when a footprint polygon is malformed.

    Attributes:
        reason: What is wrong with the polygon.
        feature_id: Id of the patio or building owning the polygon (optional).
    """

    def __init__(self, reason: str, feature_id: str | None = None):
        self.reason = reason
        self.feature_id = feature_id
        prefix = f"Invalid geometry for '{feature_id}'" if feature_id else "Invalid geometry"
        super().__init__(f"{prefix}: {reason}")


class InvalidTimeRangeError(ExposureError, ValueError):
    """Raised when a timeline range or interval is unusable.

    Attributes:
        start: Requested range start.
        end: Requested range end.
        interval: Requested step between points.
    """

    def __init__(
        self,
        message: str,
        start: datetime | None = None,
        end: datetime | None = None,
        interval: timedelta | None = None,
    ):
        self.start = start
        self.end = end
        self.interval = interval
        super().__init__(message)


class WeatherDataError(ExposureError, ValueError):
    """Raised when weather samples cannot be interpolated."""

    pass


class PatioNotFoundError(ExposureError, KeyError):
    """Raised when the geometry store has no patio with the given id."""

    def __init__(self, patio_id: str):
        self.patio_id = patio_id
        super().__init__(patio_id)

    def __str__(self) -> str:
        return f"Patio not found: {self.patio_id}"
