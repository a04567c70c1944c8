"""
Location Resolver.

Maps ``(jurisdiction, raw location text)`` to one point with a confidence tier.
A stored judgment always wins; otherwise providers are asked in priority order
(local gazetteer before the external geocoder) and the highest-tier candidate
is kept. An ``exact`` candidate ends the chain early, so a gazetteer hit never
costs an external request.

Nothing here writes: a resolution is a proposal until a curator accepts it
through the judgment store.
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

from sqlalchemy.orm import Session

from multas_core.db.enums import ConfidenceTier, GeocodingMethod
from multas_core.errors import InvalidCoordinatesError
from multas_core.spatial import validate_point
from multas_core.store import JudgmentStore
from multas_core.text import fold

from curation_service.geocode.base import Candidate, LocationProvider
from curation_service.geocode.errors import GeocodingError

logger = logging.getLogger(__name__)

_TACUAREMBO_HOUSE_NUMBER_RE = re.compile(r"\s+FRENTE\s+AL\s+N°\s+", re.IGNORECASE)

# Per-jurisdiction rewrites applied before any provider sees the text.
_CLEANUPS = {
    56: ((_TACUAREMBO_HOUSE_NUMBER_RE, " "),),
}


def clean_location(jurisdiction_id: int, text: str) -> str:
    for pattern, repl in _CLEANUPS.get(jurisdiction_id, ()):
        text = pattern.sub(repl, text)
    return text.strip()


class ResolveStatus(str, enum.Enum):
    resolved = "resolved"
    needs_manual_geocode = "needs_manual_geocode"
    invalid = "invalid"


@dataclass(frozen=True)
class Resolution:
    lat: float
    lng: float
    tier: ConfidenceTier
    method: GeocodingMethod
    source: str
    is_electronic: bool = False
    notes: str | None = None
    canonical_location: str | None = None

    @property
    def point(self) -> tuple[float, float]:
        return self.lat, self.lng


@dataclass(frozen=True)
class ResolveOutcome:
    jurisdiction_id: int
    location: str
    status: ResolveStatus
    resolution: Resolution | None = None
    reason: str | None = None


def pick_best(candidates: Iterable[tuple[str, Candidate]]) -> tuple[str, Candidate] | None:
    """Highest tier wins; among equal tiers the earliest provider wins."""
    best: tuple[str, Candidate] | None = None
    for name, cand in candidates:
        if best is None or cand.tier.rank > best[1].tier.rank:
            best = (name, cand)
    return best


class LocationResolver:
    def __init__(
        self,
        providers: Sequence[LocationProvider],
        judgments: Mapping[tuple[int, str], Resolution] | None = None,
    ) -> None:
        self._providers = tuple(providers)
        self._judgments = MappingProxyType(dict(judgments or {}))

    @classmethod
    def from_session(cls, session: Session, providers: Sequence[LocationProvider]) -> "LocationResolver":
        judgments = {}
        for row in JudgmentStore(session).list_locations():
            judgments[(row.jurisdiction_id, fold(row.location))] = Resolution(
                lat=row.lat,
                lng=row.lng,
                tier=row.confidence,
                method=row.method,
                source="judgment",
                is_electronic=row.is_electronic,
                notes=row.notes,
                canonical_location=row.canonical_location,
            )
        return cls(providers, judgments)

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers]

    def resolve(self, jurisdiction_id: int, text: str) -> Resolution | None:
        return self.resolve_detailed(jurisdiction_id, text).resolution

    def resolve_detailed(self, jurisdiction_id: int, text: str) -> ResolveOutcome:
        raw = text or ""
        if not raw.strip():
            return ResolveOutcome(jurisdiction_id, raw, ResolveStatus.invalid, reason="empty location")

        judged = self._judgments.get((jurisdiction_id, fold(raw)))
        if judged is not None:
            return ResolveOutcome(jurisdiction_id, raw, ResolveStatus.resolved, judged)

        query = clean_location(jurisdiction_id, raw)
        seen: list[tuple[str, Candidate]] = []
        errors: list[str] = []
        invalid: list[str] = []
        for provider in self._providers:
            try:
                cand = provider.lookup(jurisdiction_id, query)
            except GeocodingError as exc:
                logger.warning("%s failed for [%s] %r: %s", provider.name, jurisdiction_id, raw, exc)
                errors.append(f"{provider.name}: {exc}")
                continue
            if cand is None:
                continue
            if not cand.tier.accepted:
                errors.append(f"{provider.name}: {cand.tier.value} precision rejected")
                continue
            try:
                validate_point(cand.lat, cand.lng)
            except InvalidCoordinatesError as exc:
                logger.warning("%s returned an unusable point for [%s] %r: %s", provider.name, jurisdiction_id, raw, exc)
                invalid.append(f"{provider.name}: {exc}")
                continue
            seen.append((provider.name, cand))
            if cand.tier is ConfidenceTier.exact:
                break

        best = pick_best(seen)
        if best is None:
            if invalid and not errors:
                return ResolveOutcome(jurisdiction_id, raw, ResolveStatus.invalid, reason="; ".join(invalid))
            reason = "; ".join(errors + invalid) if errors or invalid else "no provider matched"
            return ResolveOutcome(jurisdiction_id, raw, ResolveStatus.needs_manual_geocode, reason=reason)

        name, cand = best
        resolution = Resolution(
            lat=cand.lat,
            lng=cand.lng,
            tier=cand.tier,
            method=cand.method,
            source=name,
            is_electronic=cand.is_electronic,
            notes=cand.notes,
        )
        return ResolveOutcome(jurisdiction_id, raw, ResolveStatus.resolved, resolution)
