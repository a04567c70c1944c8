from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from multas_core.db.enums import ConfidenceTier, GeocodingMethod


@dataclass(frozen=True)
class Candidate:
    lat: float
    lng: float
    tier: ConfidenceTier
    method: GeocodingMethod
    is_electronic: bool = False
    notes: str | None = None


class LocationProvider(Protocol):
    name: str

    def lookup(self, jurisdiction_id: int, text: str) -> Candidate | None:
        """Best candidate for ``text``, None when nothing matched; raises ``GeocodingError``."""
        ...
