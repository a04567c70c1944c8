"""Map endpoints: clustered features for one cell, and the initial viewport."""

from __future__ import annotations

import hashlib
import threading
from collections import defaultdict

from cachetools import LRUCache

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel

from api.config import settings
from api.deps import DbSession
from multas_core.errors import InvalidCellError, InvalidFilterError
from multas_core.mapview import MapFilters, data_version, get_map_view, viewport_cell

router = APIRouter()

_cache: LRUCache = LRUCache(maxsize=settings.map_cache_size)
_cache_lock = threading.Lock()


class ViewportResponse(BaseModel):
    """Finest cell containing every matching record, or the top-level cells when they span several."""

    cell: str | None
    resolution: int | None
    cells: list[str]


def _filters(request: Request) -> MapFilters:
    params: dict[str, list[str]] = defaultdict(list)
    for key, value in request.query_params.multi_items():
        params[key].append(value)
    try:
        return MapFilters.from_params(params)
    except InvalidFilterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _etag(version: str, cell: str, filters: MapFilters) -> str:
    digest = hashlib.sha256(f"{version}|{cell}|{filters!r}".encode()).hexdigest()[:32]
    return f'"{digest}"'


@router.get("/viewport", response_model=ViewportResponse)
def get_viewport(request: Request, db: DbSession):
    """Where the map should open for the given filters."""
    vp = viewport_cell(db, _filters(request))
    return ViewportResponse(cell=vp.cell, resolution=vp.resolution, cells=list(vp.cells))


@router.get("/{cell}")
def get_cell(cell: str, request: Request, response: Response, db: DbSession):
    """GeoJSON FeatureCollection of clusters and locations inside ``cell``."""
    filters = _filters(request)
    version = data_version(db)
    etag = _etag(version, cell, filters)
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers={"ETag": etag})

    key = (version, cell, filters)
    with _cache_lock:
        body = _cache.get(key)
    if body is None:
        try:
            body = get_map_view(db, filters, cell).as_geojson()
        except InvalidCellError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        with _cache_lock:
            _cache[key] = body

    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "no-cache"
    return body
