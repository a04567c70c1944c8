from __future__ import annotations

import enum


class ConfidenceTier(str, enum.Enum):
    """Precision of a resolved point, totally ordered by ``rank``."""

    exact = "exact"
    interpolated_range = "interpolated_range"
    approximate = "approximate"
    none = "none"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @property
    def accepted(self) -> bool:
        return self.rank >= _TIER_RANK[ConfidenceTier.interpolated_range]

    @classmethod
    def parse(cls, value: str | None) -> "ConfidenceTier":
        if value is None or value == "":
            return cls.none
        value = value.strip().lower()
        value = _LEGACY_TIERS.get(value, value)
        return cls(value)


_TIER_RANK = {
    ConfidenceTier.exact: 3,
    ConfidenceTier.interpolated_range: 2,
    ConfidenceTier.approximate: 1,
    ConfidenceTier.none: 0,
}

# Older exports used a high/medium/low scale.
_LEGACY_TIERS = {
    "high": "exact",
    "medium": "interpolated_range",
    "low": "approximate",
}


class GeocodingMethod(str, enum.Enum):
    gazetteer = "gazetteer"
    geocoder = "geocoder"
    manual = "manual"
    manual_click = "manual_click"
    manual_adjustment = "manual_adjustment"
    manual_input = "manual_input"

    @classmethod
    def parse(cls, value: str | None) -> "GeocodingMethod":
        if value is None or value == "":
            return cls.manual
        value = value.strip().lower()
        value = _LEGACY_METHODS.get(value, value)
        return cls(value)


_LEGACY_METHODS = {
    "radares_rutas": "gazetteer",
    "google_maps": "geocoder",
}
