"""Location curation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from api.deps import DbSession, Resolver
from curation_service.clustering import location_clusters
from curation_service.queue import location_queue
from multas_core.db.enums import ConfidenceTier, GeocodingMethod
from multas_core.errors import JudgmentNotFoundError
from multas_core.jurisdictions import jurisdiction_name
from multas_core.store import MAX_LOCATION_LEN, MAX_NOTES_LEN, JudgmentStore

router = APIRouter()


class QueueItem(BaseModel):
    jurisdiction_id: int
    jurisdiction: str
    location: str
    offenses: int


class ProposalResponse(BaseModel):
    jurisdiction_id: int
    location: str
    status: str
    reason: str | None = None
    lat: float | None = None
    lng: float | None = None
    confidence: ConfidenceTier | None = None
    method: GeocodingMethod | None = None
    source: str | None = None
    is_electronic: bool = False
    notes: str | None = None


class AcceptRequest(BaseModel):
    location: str = Field(..., min_length=1, max_length=MAX_LOCATION_LEN)
    lat: float
    lng: float
    is_electronic: bool = False
    method: GeocodingMethod = GeocodingMethod.manual
    confidence: ConfidenceTier = ConfidenceTier.exact
    notes: str | None = Field(None, max_length=MAX_NOTES_LEN)


class JudgmentResponse(BaseModel):
    jurisdiction_id: int
    location: str
    canonical_location: str | None
    lat: float
    lng: float
    is_electronic: bool
    method: GeocodingMethod
    confidence: ConfidenceTier
    notes: str | None

    model_config = {"from_attributes": True}


class MergeRequest(BaseModel):
    jurisdiction_id: int
    target: str
    canonical: str


class ClusterMemberItem(BaseModel):
    location: str
    lat: float
    lng: float
    offenses: int
    canonical_location: str | None
    is_principal: bool
    distance_m: float


class ClusterItem(BaseModel):
    jurisdiction_id: int
    jurisdiction: str
    total_offenses: int
    members: list[ClusterMemberItem]


@router.get("/queue", response_model=list[QueueItem])
def queue(db: DbSession, jurisdiction_id: int | None = None, limit: int = Query(100, ge=1, le=1000)):
    """Unjudged locations by number of affected offenses."""
    return [
        QueueItem(
            jurisdiction_id=i.jurisdiction_id,
            jurisdiction=jurisdiction_name(i.jurisdiction_id),
            location=i.location,
            offenses=i.offenses,
        )
        for i in location_queue(db, jurisdiction_id, limit=limit)
    ]


@router.get("/suggest/{jurisdiction_id}", response_model=ProposalResponse)
def suggest(jurisdiction_id: int, resolver: Resolver, location: str = Query(..., min_length=1)):
    """Resolver proposal for one location. Nothing is stored."""
    outcome = resolver.resolve_detailed(jurisdiction_id, location)
    res = outcome.resolution
    if res is None:
        return ProposalResponse(
            jurisdiction_id=jurisdiction_id, location=location, status=outcome.status.value, reason=outcome.reason
        )
    return ProposalResponse(
        jurisdiction_id=jurisdiction_id,
        location=location,
        status=outcome.status.value,
        lat=res.lat,
        lng=res.lng,
        confidence=res.tier,
        method=res.method,
        source=res.source,
        is_electronic=res.is_electronic,
        notes=res.notes,
    )


@router.post("/accept/{jurisdiction_id}", response_model=JudgmentResponse)
def accept(jurisdiction_id: int, body: AcceptRequest, db: DbSession):
    """Record a location judgment."""
    try:
        row = JudgmentStore(db).save_location(
            jurisdiction_id,
            body.location,
            lat=body.lat,
            lng=body.lng,
            is_electronic=body.is_electronic,
            method=body.method,
            confidence=body.confidence,
            notes=body.notes,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return JudgmentResponse.model_validate(row)


@router.post("/merge", response_model=JudgmentResponse)
def merge(body: MergeRequest, db: DbSession):
    """Make ``target`` an alias of ``canonical``."""
    try:
        row = JudgmentStore(db).merge_locations(body.jurisdiction_id, body.target, body.canonical)
    except JudgmentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return JudgmentResponse.model_validate(row)


@router.get("/clusters", response_model=list[ClusterItem])
def clusters(db: DbSession, jurisdiction_id: int | None = None):
    """Judged locations close enough to be merge candidates."""
    return [
        ClusterItem(
            jurisdiction_id=c.jurisdiction_id,
            jurisdiction=c.jurisdiction,
            total_offenses=c.total_offenses,
            members=[ClusterMemberItem(**vars(m)) for m in c.members],
        )
        for c in location_clusters(db, jurisdiction_id)
    ]
