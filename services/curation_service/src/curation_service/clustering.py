"""
Proximity clusters of location judgments, offered to curators as merge candidates.

Two judgments within ``distance_m`` of any member of a cluster join it. The
member with the most offenses is the principal; members already merged onto
the principal (canonical set, same point) are hidden.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from multas_core.db.models import LocationJudgment, Offense
from multas_core.jurisdictions import jurisdiction_name
from multas_core.spatial import haversine_m
from multas_core.store import JudgmentStore

from curation_service.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class ClusterMember:
    location: str
    lat: float
    lng: float
    offenses: int
    canonical_location: str | None = None
    is_principal: bool = False
    distance_m: float = 0.0


@dataclass
class LocationCluster:
    jurisdiction_id: int
    jurisdiction: str
    members: list[ClusterMember] = field(default_factory=list)

    @property
    def principal(self) -> ClusterMember:
        return self.members[0]

    @property
    def total_offenses(self) -> int:
        return sum(m.offenses for m in self.members)


def cluster_by_distance(judgments: Sequence[LocationJudgment], distance_m: float) -> list[list[LocationJudgment]]:
    clusters: list[list[LocationJudgment]] = []
    visited = [False] * len(judgments)
    for i, first in enumerate(judgments):
        if visited[i]:
            continue
        visited[i] = True
        cluster = [first]
        for j, other in enumerate(judgments):
            if visited[j]:
                continue
            if any(haversine_m(m.lat, m.lng, other.lat, other.lng) <= distance_m for m in cluster):
                cluster.append(other)
                visited[j] = True
        clusters.append(cluster)
    return clusters


def offense_counts(session: Session, jurisdiction_id: int | None = None) -> dict[tuple[int, str], int]:
    stmt = (
        select(Offense.jurisdiction_id, Offense.location, func.count())
        .where(Offense.location.is_not(None))
        .group_by(Offense.jurisdiction_id, Offense.location)
    )
    if jurisdiction_id is not None:
        stmt = stmt.where(Offense.jurisdiction_id == jurisdiction_id)
    return {(jid, loc): n for jid, loc, n in session.execute(stmt)}


def location_clusters(
    session: Session,
    jurisdiction_id: int | None = None,
    *,
    distance_m: float | None = None,
) -> list[LocationCluster]:
    distance_m = settings.cluster_distance_m if distance_m is None else distance_m
    counts = offense_counts(session, jurisdiction_id)

    by_jurisdiction: dict[int, list[LocationJudgment]] = defaultdict(list)
    for row in JudgmentStore(session).list_locations(jurisdiction_id):
        by_jurisdiction[row.jurisdiction_id].append(row)

    result: list[LocationCluster] = []
    for jid in sorted(by_jurisdiction):
        for group in cluster_by_distance(by_jurisdiction[jid], distance_m):
            if len(group) < 2:
                continue
            group = sorted(group, key=lambda j: (-counts.get((jid, j.location), 0), j.location))
            head = group[0]
            kept = [
                j
                for j in group
                if j is head or not (j.canonical_location and (j.lat, j.lng) == (head.lat, head.lng))
            ]
            if len(kept) < 2:
                continue
            cluster = LocationCluster(jurisdiction_id=jid, jurisdiction=jurisdiction_name(jid))
            for j in kept:
                cluster.members.append(
                    ClusterMember(
                        location=j.location,
                        lat=j.lat,
                        lng=j.lng,
                        offenses=counts.get((jid, j.location), 0),
                        canonical_location=j.canonical_location,
                        is_principal=j is head,
                        distance_m=haversine_m(head.lat, head.lng, j.lat, j.lng),
                    )
                )
            result.append(cluster)

    result.sort(key=lambda c: -c.total_offenses)
    logger.info("%d merge candidate clusters", len(result))
    return result
