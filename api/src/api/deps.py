"""FastAPI dependencies for database access and shared snapshots."""

from collections.abc import Callable, Generator, Hashable
from typing import Annotated, TypeVar

from fastapi import Depends, Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from api.config import settings
from curation_service.classify.classifier import DescriptionClassifier
from curation_service.geocode import LocationResolver, build_providers
from multas_core.db.session import connect_args_for
from multas_core.store import JudgmentStore

engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=connect_args_for(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

T = TypeVar("T")

_providers = None


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for request handling."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def provider_chain():
    global _providers
    if _providers is None:
        _providers = build_providers()
    return _providers


def _snapshot(request: Request, name: str, version: Hashable, build: Callable[[], T]) -> T:
    # app.state holds (version, value); any other version rebuilds it.
    cached = getattr(request.app.state, name, None)
    if cached is not None and cached[0] == version:
        return cached[1]
    value = build()
    setattr(request.app.state, name, (version, value))
    return value


def get_classifier(request: Request, db: Annotated[Session, Depends(get_db)]) -> DescriptionClassifier:
    """The classifier snapshot for the catalog and description judgments currently in the store."""
    version = JudgmentStore(db).description_version()
    return _snapshot(request, "classifier", version, lambda: DescriptionClassifier.from_session(db))


def get_resolver(request: Request, db: Annotated[Session, Depends(get_db)]) -> LocationResolver:
    """The resolver snapshot for the location judgments currently in the store."""
    providers = provider_chain()
    version = (id(providers), JudgmentStore(db).location_version())
    return _snapshot(request, "resolver", version, lambda: LocationResolver.from_session(db, providers))


DbSession = Annotated[Session, Depends(get_db)]
Classifier = Annotated[DescriptionClassifier, Depends(get_classifier)]
Resolver = Annotated[LocationResolver, Depends(get_resolver)]
