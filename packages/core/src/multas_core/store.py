"""
Judgment Store: persistent, human-authored truth about descriptions and locations.

All writes go through ``JudgmentStore``. Methods flush but never commit; the
caller owns the transaction (``with SessionLocal() as session: ...; session.commit()``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from multas_core.db.enums import ConfidenceTier, GeocodingMethod
from multas_core.db.models import Article, DescriptionJudgment, LocationJudgment
from multas_core.errors import JudgmentNotFoundError, UnknownArticleError
from multas_core.export import ArticleRecord, DescriptionRecord, ExportDocument, LocationRecord
from multas_core.spatial import compute_cells, validate_point
from multas_core.text import fold

logger = logging.getLogger(__name__)

MAX_LOCATION_LEN = 500
MAX_NOTES_LEN = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for values written in UTC.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def derive_article_codes(article_ids: Iterable[str], code_by_id: dict[str, int]) -> list[int]:
    """Distinct group codes in first-seen article order; unknown ids raise."""
    codes: list[int] = []
    for article_id in article_ids:
        if article_id not in code_by_id:
            raise UnknownArticleError(article_id)
        code = code_by_id[article_id]
        if code not in codes:
            codes.append(code)
    return codes


def _dedupe(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    for v in values:
        if v not in out:
            out.append(v)
    return out


class JudgmentStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    # Articles

    def list_articles(self) -> list[Article]:
        return list(self.session.scalars(select(Article).order_by(Article.id)))

    def get_article(self, article_id: str) -> Article | None:
        return self.session.get(Article, article_id)

    def article_codes_by_id(self) -> dict[str, int]:
        return {row.id: row.code for row in self.session.execute(select(Article.id, Article.code))}

    def add_article(self, article_id: str, *, code: int, text: str, title: str = "") -> Article:
        article = self.session.get(Article, article_id)
        if article is None:
            article = Article(id=article_id, code=code, text=text, title=title)
            self.session.add(article)
        else:
            article.code = code
            article.text = text
            article.title = title
        self.session.flush()
        return article

    def seed_articles(self, records: Iterable[ArticleRecord]) -> int:
        """Insert catalog articles that are not present yet; existing ids are left alone."""
        existing = set(self.session.scalars(select(Article.id)))
        created = 0
        for rec in records:
            if rec.id in existing:
                continue
            self.session.add(Article(id=rec.id, code=rec.code, text=rec.text, title=rec.title))
            existing.add(rec.id)
            created += 1
        self.session.flush()
        return created

    def search_articles(self, query: str, *, limit: int = 20) -> list[Article]:
        needle = fold(query)
        if not needle:
            return []
        hits = [
            a
            for a in self.list_articles()
            if needle in fold(a.id) or needle in fold(a.title) or needle in fold(a.text)
        ]
        return hits[:limit]

    # Description judgments

    def get_description(self, description: str) -> DescriptionJudgment | None:
        row = self.session.scalars(
            select(DescriptionJudgment).where(DescriptionJudgment.description == description)
        ).first()
        if row is not None:
            return row
        key = fold(description)
        if not key:
            return None
        for candidate in self.session.scalars(select(DescriptionJudgment)):
            if fold(candidate.description) == key:
                return candidate
        return None

    def is_description_judged(self, description: str) -> bool:
        return self.get_description(description) is not None

    def save_description(self, description: str, article_ids: list[str]) -> DescriptionJudgment:
        description = description.strip()
        if not description:
            raise ValueError("description must not be empty")
        article_ids = _dedupe(a.strip() for a in article_ids if a.strip())
        codes = derive_article_codes(article_ids, self.article_codes_by_id())

        # Case and accent variants update the judgment already on file.
        row = self.get_description(description)
        if row is None:
            row = DescriptionJudgment(description=description)
            self.session.add(row)
        row.article_ids = article_ids
        row.article_codes = codes
        row.updated_at = _utcnow()
        self.session.flush()
        logger.info("description judged: %r -> %s", description, article_ids)
        return row

    def list_descriptions(self) -> list[DescriptionJudgment]:
        return list(self.session.scalars(select(DescriptionJudgment).order_by(DescriptionJudgment.description)))

    def bulk_insert_descriptions(self, records: Iterable[DescriptionRecord]) -> int:
        code_by_id = self.article_codes_by_id()
        now = _utcnow()
        n = 0
        for rec in records:
            ids = _dedupe(rec.article_ids)
            self.session.add(
                DescriptionJudgment(
                    description=rec.description,
                    article_ids=ids,
                    article_codes=derive_article_codes(ids, code_by_id),
                    updated_at=now,
                )
            )
            n += 1
        self.session.flush()
        return n

    # Location judgments

    def get_location(self, jurisdiction_id: int, location: str) -> LocationJudgment | None:
        row = self.session.scalars(
            select(LocationJudgment).where(
                LocationJudgment.jurisdiction_id == jurisdiction_id,
                LocationJudgment.location == location,
            )
        ).first()
        if row is not None:
            return row
        key = fold(location)
        if not key:
            return None
        for candidate in self.session.scalars(
            select(LocationJudgment).where(LocationJudgment.jurisdiction_id == jurisdiction_id)
        ):
            if fold(candidate.location) == key:
                return candidate
        return None

    def save_location(
        self,
        jurisdiction_id: int,
        location: str,
        *,
        lat: float,
        lng: float,
        is_electronic: bool = False,
        method: GeocodingMethod | str = GeocodingMethod.manual,
        confidence: ConfidenceTier | str = ConfidenceTier.exact,
        notes: str | None = None,
        canonical_location: str | None = None,
    ) -> LocationJudgment:
        location = location.strip()
        if not location:
            raise ValueError("location must not be empty")
        if len(location) > MAX_LOCATION_LEN:
            raise ValueError(f"location longer than {MAX_LOCATION_LEN} characters")
        if notes is not None and len(notes) > MAX_NOTES_LEN:
            raise ValueError(f"notes longer than {MAX_NOTES_LEN} characters")
        validate_point(lat, lng)
        method = method if isinstance(method, GeocodingMethod) else GeocodingMethod.parse(method)
        confidence = confidence if isinstance(confidence, ConfidenceTier) else ConfidenceTier.parse(confidence)

        row = self.get_location(jurisdiction_id, location)
        now = _utcnow()
        if row is None:
            row = LocationJudgment(jurisdiction_id=jurisdiction_id, location=location, created_at=now)
            self.session.add(row)
        row.lat = lat
        row.lng = lng
        row.is_electronic = is_electronic
        row.method = method
        row.confidence = confidence
        row.notes = notes
        if canonical_location is not None:
            row.canonical_location = canonical_location or None
        row.updated_at = now
        row.set_cells(compute_cells(lat, lng))
        self.session.flush()
        logger.info("location judged: [%s] %r -> (%.6f, %.6f)", jurisdiction_id, location, lat, lng)
        return row

    def list_locations(self, jurisdiction_id: int | None = None) -> list[LocationJudgment]:
        stmt = select(LocationJudgment).order_by(LocationJudgment.jurisdiction_id, LocationJudgment.location)
        if jurisdiction_id is not None:
            stmt = stmt.where(LocationJudgment.jurisdiction_id == jurisdiction_id)
        return list(self.session.scalars(stmt))

    def bulk_insert_locations(self, records: Iterable[LocationRecord]) -> int:
        now = _utcnow()
        n = 0
        for rec in records:
            validate_point(rec.lat, rec.lng)
            row = LocationJudgment(
                jurisdiction_id=rec.jurisdiction_id,
                location=rec.location,
                canonical_location=rec.canonical_location or None,
                lat=rec.lat,
                lng=rec.lng,
                is_electronic=rec.is_electronic,
                method=rec.method,
                confidence=rec.confidence,
                notes=rec.notes,
                created_at=now,
                updated_at=now,
            )
            row.set_cells(compute_cells(rec.lat, rec.lng))
            self.session.add(row)
            n += 1
        self.session.flush()
        return n

    def merge_locations(self, jurisdiction_id: int, target: str, canonical: str) -> LocationJudgment:
        """Point ``target`` at ``canonical``: copy its point and cells, record the canonical name."""
        if target == canonical:
            raise ValueError("a location cannot be merged into itself")
        canonical_row = self.get_location(jurisdiction_id, canonical)
        if canonical_row is None:
            raise JudgmentNotFoundError(f"no judgment for canonical location {canonical!r}")
        target_row = self.get_location(jurisdiction_id, target)
        if target_row is None:
            raise JudgmentNotFoundError(f"no judgment for location {target!r}")

        target_row.canonical_location = canonical_row.canonical_location or canonical_row.location
        target_row.lat = canonical_row.lat
        target_row.lng = canonical_row.lng
        target_row.is_electronic = canonical_row.is_electronic
        target_row.set_cells(canonical_row.cells())
        target_row.updated_at = _utcnow()
        self.session.flush()
        logger.info("merged [%s] %r into %r", jurisdiction_id, target, target_row.canonical_location)
        return target_row

    # Whole-store operations

    def counts(self) -> dict[str, int]:
        return {
            "articles": self.session.scalar(select(func.count()).select_from(Article)) or 0,
            "descriptions": self.session.scalar(select(func.count()).select_from(DescriptionJudgment)) or 0,
            "locations": self.session.scalar(select(func.count()).select_from(LocationJudgment)) or 0,
        }

    def description_version(self) -> tuple:
        """Changes whenever the catalog or a description judgment changes."""
        articles = self.session.scalar(select(func.count()).select_from(Article))
        count, updated = self.session.execute(
            select(func.count(), func.max(DescriptionJudgment.updated_at))
        ).one()
        return (articles, count, updated)

    def location_version(self) -> tuple:
        """Changes whenever a location judgment is added, edited or merged."""
        return tuple(
            self.session.execute(select(func.count(), func.max(LocationJudgment.updated_at))).one()
        )

    def last_updated(self) -> datetime | None:
        """Newest judgment timestamp across descriptions and locations, in UTC."""
        stamps = [
            self.session.scalar(select(func.max(DescriptionJudgment.updated_at))),
            self.session.scalar(select(func.max(LocationJudgment.updated_at))),
        ]
        stamps = [as_utc(s) for s in stamps if s is not None]
        return max(stamps) if stamps else None

    def clear_all(self) -> None:
        self.session.execute(delete(LocationJudgment))
        self.session.execute(delete(DescriptionJudgment))
        self.session.execute(delete(Article))
        self.session.flush()

    def to_export(self) -> ExportDocument:
        return ExportDocument(
            articles=[ArticleRecord(id=a.id, text=a.text, code=a.code, title=a.title) for a in self.list_articles()],
            descriptions=[
                DescriptionRecord(
                    description=d.description,
                    article_ids=list(d.article_ids or []),
                    article_codes=list(d.article_codes or []),
                )
                for d in self.list_descriptions()
            ],
            locations=[
                LocationRecord(
                    jurisdiction_id=loc.jurisdiction_id,
                    location=loc.location,
                    canonical_location=loc.canonical_location,
                    lat=loc.lat,
                    lng=loc.lng,
                    is_electronic=loc.is_electronic,
                    method=loc.method,
                    confidence=loc.confidence,
                    notes=loc.notes,
                )
                for loc in self.list_locations()
            ],
            last_updated=self.last_updated(),
        )

    def replace_all(self, doc: ExportDocument) -> None:
        """Clear and reload all three tables; the caller commits or rolls back as one unit."""
        self.clear_all()
        self.seed_articles(doc.articles)
        self.bulk_insert_descriptions(doc.descriptions)
        self.bulk_insert_locations(doc.locations)
