from __future__ import annotations

from dataclasses import dataclass

from docbatch.validation import validate_number


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        validate_number("latitude", self.latitude, min_value=-90, max_value=90)
        validate_number("longitude", self.longitude, min_value=-180, max_value=180)

    def to_proto(self) -> dict[str, float]:
        return {"latitude": float(self.latitude), "longitude": float(self.longitude)}
