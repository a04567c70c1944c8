from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from multas_core.db.base import Base
from multas_core.db.enums import GeocodingMethod
from multas_core.db.models import Offense
from multas_core.spatial import compute_cells
from multas_core.store import JudgmentStore

from curation_service.geocode.base import Candidate

ARTICLES = [
    ("13.3.A", 13, "Exceso de velocidad", "Exceder los límites de velocidad establecidos"),
    ("21.1", 21, "Cinturón", "No usar cinturón de seguridad"),
    ("18.2", 18, "Semáforo", "No respetar la luz roja del semáforo"),
    ("24.1", 24, "Estacionamiento", "Estacionar en lugar prohibido"),
]


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def session(session_factory) -> Session:
    with session_factory() as s:
        yield s


@pytest.fixture
def store(session) -> JudgmentStore:
    return JudgmentStore(session)


@pytest.fixture
def seeded_store(store) -> JudgmentStore:
    for article_id, code, title, text in ARTICLES:
        store.add_article(article_id, code=code, title=title, text=text)
    store.session.commit()
    return store


def add_offense(
    session: Session,
    *,
    jurisdiction_id: int = 6,
    description: str | None = "EXCESO DE VELOCIDAD",
    location: str | None = "AV ITALIA Y COMERCIO",
    point: tuple[float, float] | None = None,
    ts: datetime | None = None,
    article_ids: list[str] | None = None,
    article_codes: list[int] | None = None,
    is_electronic: bool | None = None,
) -> Offense:
    offense = Offense(
        jurisdiction_id=jurisdiction_id,
        description=description,
        location=location,
        ts=ts or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        amount=1000.0,
        article_ids=article_ids,
        article_codes=article_codes,
        is_electronic=is_electronic,
    )
    if point is not None:
        offense.lat, offense.lng = point
        offense.set_cells(compute_cells(*point))
    session.add(offense)
    session.flush()
    return offense


class FakeProvider:
    """Location provider returning a fixed candidate or raising a fixed error; records every call."""

    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = []

    def lookup(self, jurisdiction_id, text):
        self.calls.append((jurisdiction_id, text))
        if self.error is not None:
            raise self.error
        return self.result


def candidate(tier, lat=-34.9, lng=-56.2, method=GeocodingMethod.geocoder) -> Candidate:
    return Candidate(lat=lat, lng=lng, tier=tier, method=method)
