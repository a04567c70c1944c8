"""
Local gazetteer of fixed enforcement installations (speed cameras on national routes).

Locations on routes are written as route number plus progressive distance,
e.g. ``RUTA 005 Y 038K131_D`` (route 5, km 38 + 131 m, direction D) or
``Ruta 3 y km 453``. Installations are keyed by ``"<route>:<km>k<mmm>"``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType

from multas_core.db.enums import ConfidenceTier, GeocodingMethod

from curation_service.geocode.base import Candidate

logger = logging.getLogger(__name__)

# Largest gap, in meters on the same kilometre, accepted as the same installation.
MAX_MARKER_GAP_M = 1000

_ROUTE_KM_M_RE = re.compile(r"ruta\s*([\d\s]+)\s*R?\s+y\s*([\d\s]+)\s*k\s*([\d\s]+)(?:_([cd]))?", re.IGNORECASE)
_ROUTE_KM_RE = re.compile(r"ruta(?:\s+nacional)?\s*([\d\s]+)\s+y\s*km\s*([\d\s]+)", re.IGNORECASE)
_BARE_KM_M_RE = re.compile(r"^([\d\s]+)\s*R?\s+y\s*([\d\s]+)\s*k\s*([\d\s]+)(?:_([cd]))?$", re.IGNORECASE)


@dataclass(frozen=True)
class RouteMarker:
    route: int
    progressive: str
    direction: str | None = None

    @property
    def key(self) -> str:
        return f"{self.route}:{self.progressive}"


@dataclass(frozen=True)
class Installation:
    route: int
    progressive: str
    operator: str
    description: str
    lat: float
    lng: float

    @property
    def key(self) -> str:
        return f"{self.route}:{self.progressive}"

    @property
    def markers(self) -> list[str]:
        return [m.strip() for m in self.progressive.split("/") if m.strip()]


def normalize_progressive(value: str) -> str:
    """``038k50`` -> ``38k050``; ``/``-separated marker lists are normalized per marker."""
    out = []
    for part in value.lower().split("/"):
        part = part.strip()
        km, sep, meters = part.partition("k")
        if sep and "k" not in meters:
            km = km.lstrip("0") or "0"
            m = int(meters) if meters.isdigit() else 0
            part = f"{km}k{m:03d}"
        out.append(part)
    return "/".join(out)


def _split_marker(marker: str) -> tuple[int, int] | None:
    km, sep, meters = marker.partition("k")
    if not sep or not km.strip().isdigit() or not meters.strip().isdigit():
        return None
    return int(km), int(meters)


def _digits(value: str) -> str:
    return "".join(value.split())


def parse_route_location(text: str) -> RouteMarker | None:
    text = text.strip()
    for pattern in (_ROUTE_KM_M_RE, _ROUTE_KM_RE, _BARE_KM_M_RE):
        m = pattern.search(text)
        if m is None:
            continue
        route = _digits(m.group(1))
        if not route.isdigit():
            continue
        if pattern is _ROUTE_KM_RE:
            progressive = f"{_digits(m.group(2))}k000"
            direction = None
        else:
            progressive = f"{_digits(m.group(2))}k{_digits(m.group(3))}"
            direction = m.group(4).upper() if m.group(4) else None
        return RouteMarker(int(route), normalize_progressive(progressive), direction)
    return None


class Gazetteer:
    name = "gazetteer"

    def __init__(self, installations: Iterable[Installation]) -> None:
        by_key = {}
        for inst in installations:
            by_key[inst.key] = inst
        self._by_key = MappingProxyType(by_key)

    def __len__(self) -> int:
        return len(self._by_key)

    @classmethod
    def from_geojson(cls, path: Path) -> "Gazetteer":
        data = json.loads(path.read_text(encoding="utf-8"))
        installations = []
        for feature in data.get("features", []):
            props = feature.get("properties") or {}
            coords = (feature.get("geometry") or {}).get("coordinates") or []
            if len(coords) < 2 or props.get("ruta") is None:
                logger.warning("skipping gazetteer feature without route or coordinates: %s", props)
                continue
            installations.append(
                Installation(
                    route=int(props["ruta"]),
                    progressive=normalize_progressive(str(props.get("progresiva") or "")),
                    operator=props.get("gestion") or "",
                    description=props.get("descrip") or "",
                    lng=float(coords[0]),
                    lat=float(coords[1]),
                )
            )
        logger.info("loaded %d installations from %s", len(installations), path)
        return cls(installations)

    def find(self, marker: RouteMarker) -> tuple[Installation, ConfidenceTier] | None:
        """Exact key or marker-list hit is ``exact``; the nearest marker on the same kilometre is ``interpolated_range``."""
        inst = self._by_key.get(marker.key)
        if inst is not None:
            return inst, ConfidenceTier.exact

        wanted = _split_marker(marker.progressive)
        best: Installation | None = None
        best_gap = MAX_MARKER_GAP_M
        prefix = f"{marker.route}:"
        for key in sorted(self._by_key):
            if not key.startswith(prefix):
                continue
            inst = self._by_key[key]
            for m in inst.markers:
                if m == marker.progressive:
                    return inst, ConfidenceTier.exact
                got = _split_marker(m)
                if wanted is None or got is None or got[0] != wanted[0]:
                    continue
                gap = abs(got[1] - wanted[1])
                if gap < best_gap:
                    best_gap = gap
                    best = inst
        if best is None:
            return None
        return best, ConfidenceTier.interpolated_range

    def lookup(self, jurisdiction_id: int, text: str) -> Candidate | None:
        marker = parse_route_location(text)
        if marker is None:
            return None
        hit = self.find(marker)
        if hit is None:
            logger.debug("no installation for %s (%r)", marker.key, text)
            return None
        inst, tier = hit
        return Candidate(
            lat=inst.lat,
            lng=inst.lng,
            tier=tier,
            method=GeocodingMethod.gazetteer,
            is_electronic=True,
            notes=inst.description or None,
        )
