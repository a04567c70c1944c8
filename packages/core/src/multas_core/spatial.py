"""
Spatial indexing: point validation and H3 cell assignment.

Every resolved point is indexed at each stored resolution so the map can
group records by any level of the hierarchy without recomputing cells.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import h3

from multas_core.db.models import CELL_RESOLUTIONS
from multas_core.errors import InvalidCellError, InvalidCoordinatesError
from multas_core.settings import settings

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


def country_bounds() -> Bounds:
    return Bounds(
        min_lat=settings.bounds_min_lat,
        max_lat=settings.bounds_max_lat,
        min_lng=settings.bounds_min_lng,
        max_lng=settings.bounds_max_lng,
    )


def validate_point(lat: float, lng: float, *, bounds: Bounds | None = None) -> None:
    if lat is None or lng is None or math.isnan(lat) or math.isnan(lng):
        raise InvalidCoordinatesError(lat, lng, "missing coordinate")
    if not -90.0 <= lat <= 90.0:
        raise InvalidCoordinatesError(lat, lng, "latitude outside [-90, 90]")
    if not -180.0 <= lng <= 180.0:
        raise InvalidCoordinatesError(lat, lng, "longitude outside [-180, 180]")
    bounds = bounds or country_bounds()
    if not bounds.contains(lat, lng):
        raise InvalidCoordinatesError(lat, lng, "outside the configured country bounds")


def compute_cells(lat: float, lng: float) -> dict[int, str]:
    return {res: h3.latlng_to_cell(lat, lng, res) for res in CELL_RESOLUTIONS}


def cell_resolution(cell: str) -> int:
    """Resolution of ``cell``; rejects malformed ids and unstored levels."""
    if not isinstance(cell, str) or not cell or not h3.is_valid_cell(cell):
        raise InvalidCellError(str(cell))
    res = h3.get_resolution(cell)
    if res not in CELL_RESOLUTIONS:
        raise InvalidCellError(cell, f"resolution {res} is not indexed")
    return res


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))
