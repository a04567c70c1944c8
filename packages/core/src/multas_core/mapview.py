"""
Map Cluster Aggregator.

Given a requested cell and a filter set, group matching offense records by the
next-finer cell and decide which groups are drawn as a single cluster and which
are exploded into their individual locations, so that the rendered feature
count stays bounded regardless of how many records match.

Exploded cells are re-checked against their real location set: aggregate
counts computed over the child cell can disagree with the locations actually
found under it, and a cell that turns out much denser than expected is drawn
as one corrective cluster instead.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import String, cast, distinct, extract, func, or_, select
from sqlalchemy.orm import Session

from multas_core.db.models import (
    CELL_RESOLUTIONS,
    FINEST_RESOLUTION,
    DescriptionJudgment,
    LocationJudgment,
    Offense,
    cell_column_name,
)
from multas_core.errors import InvalidFilterError
from multas_core.settings import MIN_MAP_BUDGET, settings
from multas_core.spatial import cell_resolution

COORD_DECIMALS = 6

FILTER_DIMENSIONS = (
    "jurisdiction",
    "year",
    "location",
    "description",
    "article_id",
    "article_code",
    "electronic",
)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]
    out: list[str] = []
    for item in items:
        # "a,b" and repeated parameters are both accepted for multi-valued dimensions.
        out.extend(p.strip() for p in str(item).split(",") if p.strip())
    return out


def _ints(dimension: str, values: list[str]) -> tuple[int, ...]:
    try:
        return tuple(int(v) for v in values)
    except ValueError:
        raise InvalidFilterError(dimension, "expected integer values for filter") from None


@dataclass(frozen=True)
class MapFilters:
    jurisdictions: tuple[int, ...] = ()
    years: tuple[int, ...] = ()
    locations: tuple[str, ...] = ()
    description: str | None = None
    article_ids: tuple[str, ...] = ()
    article_codes: tuple[int, ...] = ()
    electronic: bool | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "MapFilters":
        unknown = sorted(k for k in params if k not in FILTER_DIMENSIONS)
        if unknown:
            raise InvalidFilterError(unknown[0])

        electronic: bool | None = None
        raw_electronic = _as_list(params.get("electronic"))
        if raw_electronic:
            flag = raw_electronic[0].lower()
            if flag in ("1", "true", "yes"):
                electronic = True
            elif flag in ("0", "false", "no"):
                electronic = False
            else:
                raise InvalidFilterError("electronic", "expected a boolean for filter")

        description = params.get("description")
        if isinstance(description, (list, tuple)):
            description = description[0] if description else None

        return cls(
            jurisdictions=_ints("jurisdiction", _as_list(params.get("jurisdiction"))),
            years=_ints("year", _as_list(params.get("year"))),
            locations=tuple(_as_list(params.get("location"))),
            description=(description or "").strip() or None,
            article_ids=tuple(_as_list(params.get("article_id"))),
            article_codes=_ints("article_code", _as_list(params.get("article_code"))),
            electronic=electronic,
        )

    def apply(self, stmt):
        stmt = stmt.where(Offense.lat.is_not(None), Offense.lng.is_not(None))
        if self.jurisdictions:
            stmt = stmt.where(Offense.jurisdiction_id.in_(self.jurisdictions))
        if self.years:
            stmt = stmt.where(extract("year", Offense.ts).in_(self.years))
        if self.locations:
            stmt = stmt.where(or_(Offense.location.in_(self.locations), Offense.canonical_location.in_(self.locations)))
        if self.description:
            stmt = stmt.where(Offense.description.ilike(f"%{self.description}%"))
        if self.article_ids:
            stmt = stmt.where(or_(*(_json_list_contains(Offense.article_ids, f'"{a}"') for a in self.article_ids)))
        if self.article_codes:
            stmt = stmt.where(or_(*(_json_list_contains(Offense.article_codes, str(c)) for c in self.article_codes)))
        if self.electronic is not None:
            stmt = stmt.where(Offense.is_electronic.is_(self.electronic))
        return stmt


def _json_list_contains(column, item: str):
    # Matches one serialized element of a JSON list, e.g. 3 in "[21, 3]".
    text = cast(column, String)
    return or_(
        text == f"[{item}]",
        text.like(f"[{item},%"),
        text.like(f"%, {item},%"),
        text.like(f"%, {item}]"),
        text.like(f"%,{item},%"),
        text.like(f"%,{item}]"),
    )


@dataclass(frozen=True)
class CandidateCluster:
    cell: str
    records: int
    locations: int
    lat: float
    lng: float


@dataclass
class MapView:
    cell: str
    resolution: int
    features: list[dict] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return sum(f["properties"]["offenses"] for f in self.features)

    def as_geojson(self) -> dict:
        return {
            "type": "FeatureCollection",
            "features": self.features,
            "properties": {"h3_index": self.cell, "resolution": self.resolution},
        }


def _display_location():
    return func.coalesce(Offense.canonical_location, Offense.location)


def _feature(kind: str, *, cell: str, lat: float, lng: float, offenses: int, locations: int, location: str | None):
    lat = round(float(lat), COORD_DECIMALS)
    lng = round(float(lng), COORD_DECIMALS)
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lng, lat]},
        "properties": {
            "type": kind,
            "h3_index": cell,
            "offenses": int(offenses),
            "locations": int(locations),
            "centroid": [lng, lat],
            "location": location,
        },
    }


def candidate_clusters(session: Session, filters: MapFilters, cell: str, resolution: int) -> list[CandidateCluster]:
    parent_col = getattr(Offense, cell_column_name(resolution))
    child_col = getattr(Offense, cell_column_name(resolution + 1))
    n_locations = func.count(distinct(_display_location()))
    stmt = (
        select(
            child_col.label("cell"),
            func.count().label("records"),
            n_locations.label("locations"),
            func.avg(Offense.lat).label("lat"),
            func.avg(Offense.lng).label("lng"),
        )
        .where(parent_col == cell, child_col.is_not(None))
        .group_by(child_col)
        .order_by(n_locations.asc(), child_col.asc())
    )
    stmt = filters.apply(stmt)
    return [
        CandidateCluster(cell=r.cell, records=r.records, locations=r.locations, lat=r.lat, lng=r.lng)
        for r in session.execute(stmt)
    ]


def _location_rows(session: Session, filters: MapFilters, conditions: list) -> list:
    name = _display_location()
    stmt = (
        select(name.label("location"), Offense.lat, Offense.lng, func.count().label("records"))
        .where(*conditions)
        .group_by(name, Offense.lat, Offense.lng)
        .order_by(name, Offense.lat, Offense.lng)
    )
    return list(session.execute(filters.apply(stmt)))


def get_map_view(
    session: Session,
    filters: MapFilters,
    cell: str,
    *,
    budget: int | None = None,
    safety_multiple: int | None = None,
    max_exploded_points: int | None = None,
) -> MapView:
    """
    Clusters and locations inside ``cell`` for the given filters.

    At most ``safety_multiple * budget`` features are drawn. ``budget`` must be
    at least ``MIN_MAP_BUDGET``, the number of children of a cell.
    """
    budget = settings.map_budget if budget is None else budget
    if budget < MIN_MAP_BUDGET:
        raise ValueError(f"map budget must be at least {MIN_MAP_BUDGET}, got {budget}")
    safety_multiple = settings.map_safety_multiple if safety_multiple is None else safety_multiple
    max_exploded_points = settings.map_max_exploded_points if max_exploded_points is None else max_exploded_points

    resolution = cell_resolution(cell)
    view = MapView(cell=cell, resolution=resolution)
    parent_col = getattr(Offense, cell_column_name(resolution))

    if resolution == FINEST_RESOLUTION:
        for row in _location_rows(session, filters, [parent_col == cell]):
            view.features.append(
                _feature(
                    "location",
                    cell=cell,
                    lat=row.lat,
                    lng=row.lng,
                    offenses=row.records,
                    locations=1,
                    location=row.location,
                )
            )
        return view

    child_col = getattr(Offense, cell_column_name(resolution + 1))
    clusters = candidate_clusters(session, filters, cell, resolution)
    visible = len(clusters)
    for c in clusters:
        if visible - 1 + c.locations > budget:
            view.features.append(
                _feature("cluster", cell=c.cell, lat=c.lat, lng=c.lng, offenses=c.records, locations=c.locations, location=None)
            )
            continue
        visible += c.locations - 1

        rows = _location_rows(session, filters, [parent_col == cell, child_col == c.cell])
        if len(rows) > safety_multiple * max(c.locations, 1) or len(rows) > max_exploded_points:
            n = sum(r.records for r in rows)
            lat = sum(r.lat * r.records for r in rows) / n
            lng = sum(r.lng * r.records for r in rows) / n
            view.features.append(
                _feature("cluster", cell=c.cell, lat=lat, lng=lng, offenses=n, locations=len(rows), location=None)
            )
            continue
        for r in rows:
            view.features.append(
                _feature("location", cell=c.cell, lat=r.lat, lng=r.lng, offenses=r.records, locations=1, location=r.location)
            )
    return view


@dataclass(frozen=True)
class Viewport:
    cell: str | None
    resolution: int | None
    cells: tuple[str, ...] = ()


def viewport_cell(session: Session, filters: MapFilters) -> Viewport:
    """Finest cell holding every matching record; coarsest-level cells when none does."""
    best: Viewport | None = None
    for res in CELL_RESOLUTIONS:
        col = getattr(Offense, cell_column_name(res))
        stmt = filters.apply(select(col).where(col.is_not(None)).distinct().order_by(col).limit(2))
        cells = list(session.scalars(stmt))
        if len(cells) == 1:
            best = Viewport(cell=cells[0], resolution=res, cells=(cells[0],))
            continue
        if best is None and res == CELL_RESOLUTIONS[0]:
            if not cells:
                return Viewport(cell=None, resolution=None)
            all_cells = filters.apply(select(col).where(col.is_not(None)).distinct().order_by(col))
            return Viewport(cell=None, resolution=res, cells=tuple(session.scalars(all_cells)))
        break
    return best or Viewport(cell=None, resolution=None)


def data_version(session: Session) -> str:
    """Changes whenever offense enrichment or judgments change; used for cache keys and ETags."""
    offense_count, offense_max_id, located = session.execute(
        select(func.count(), func.max(Offense.id), func.count(Offense.lat))
    ).one()
    enriched = session.scalar(select(func.count(Offense.article_ids)))
    loc_count, loc_updated = session.execute(select(func.count(), func.max(LocationJudgment.updated_at))).one()
    desc_count, desc_updated = session.execute(
        select(func.count(), func.max(DescriptionJudgment.updated_at))
    ).one()
    return ":".join(
        str(v)
        for v in (offense_count, offense_max_id, located, enriched, loc_count, loc_updated, desc_count, desc_updated)
    )
