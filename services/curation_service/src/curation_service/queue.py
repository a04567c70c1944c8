"""Curation queues: what still needs a human judgment, most impactful first."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from multas_core.db.models import DescriptionJudgment, LocationJudgment, Offense
from multas_core.text import fold

DEFAULT_QUEUE_LIMIT = 1000


@dataclass(frozen=True)
class LocationQueueItem:
    jurisdiction_id: int
    location: str
    offenses: int


@dataclass(frozen=True)
class DescriptionQueueItem:
    description: str
    offenses: int


@dataclass(frozen=True)
class Progress:
    total: int
    judged: int

    @property
    def pending(self) -> int:
        return self.total - self.judged

    @property
    def percent(self) -> float:
        return 100.0 * self.judged / self.total if self.total else 100.0


def _judged_locations(session: Session) -> set[tuple[int, str]]:
    return {(jid, fold(loc)) for jid, loc in session.execute(select(LocationJudgment.jurisdiction_id, LocationJudgment.location))}


def _judged_descriptions(session: Session) -> set[str]:
    return {fold(d) for d in session.scalars(select(DescriptionJudgment.description))}


def _location_groups(session: Session, jurisdiction_id: int | None = None):
    n = func.count().label("n")
    stmt = (
        select(Offense.jurisdiction_id, Offense.location, n)
        .where(Offense.location.is_not(None), Offense.location != "")
        .group_by(Offense.jurisdiction_id, Offense.location)
        .order_by(n.desc(), Offense.jurisdiction_id, Offense.location)
    )
    if jurisdiction_id is not None:
        stmt = stmt.where(Offense.jurisdiction_id == jurisdiction_id)
    return session.execute(stmt)


def _description_groups(session: Session):
    n = func.count().label("n")
    stmt = (
        select(Offense.description, n)
        .where(Offense.description.is_not(None), Offense.description != "")
        .group_by(Offense.description)
        .order_by(n.desc(), Offense.description)
    )
    return session.execute(stmt)


def location_queue(
    session: Session,
    jurisdiction_id: int | None = None,
    *,
    limit: int = DEFAULT_QUEUE_LIMIT,
) -> list[LocationQueueItem]:
    judged = _judged_locations(session)
    out: list[LocationQueueItem] = []
    for jid, loc, n in _location_groups(session, jurisdiction_id):
        if (jid, fold(loc)) in judged:
            continue
        out.append(LocationQueueItem(jid, loc, n))
        if len(out) >= limit:
            break
    return out


def description_queue(session: Session, *, limit: int = DEFAULT_QUEUE_LIMIT) -> list[DescriptionQueueItem]:
    judged = _judged_descriptions(session)
    out: list[DescriptionQueueItem] = []
    for description, n in _description_groups(session):
        if fold(description) in judged:
            continue
        out.append(DescriptionQueueItem(description, n))
        if len(out) >= limit:
            break
    return out


def location_progress(session: Session) -> Progress:
    judged = _judged_locations(session)
    total = done = 0
    for jid, loc, _ in _location_groups(session):
        total += 1
        if (jid, fold(loc)) in judged:
            done += 1
    return Progress(total, done)


def description_progress(session: Session) -> Progress:
    judged = _judged_descriptions(session)
    total = done = 0
    for description, _ in _description_groups(session):
        total += 1
        if fold(description) in judged:
            done += 1
    return Progress(total, done)
