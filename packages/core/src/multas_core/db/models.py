from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from multas_core.db.base import Base
from multas_core.db.enums import ConfidenceTier, GeocodingMethod

CELL_RESOLUTIONS = tuple(range(1, 9))
FINEST_RESOLUTION = CELL_RESOLUTIONS[-1]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SpatialCellsMixin:
    """One H3 cell id per stored resolution, coarsest first."""

    h3_res1: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    h3_res2: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    h3_res3: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    h3_res4: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    h3_res5: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    h3_res6: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    h3_res7: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    h3_res8: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)

    def cells(self) -> dict[int, str | None]:
        return {res: getattr(self, cell_column_name(res)) for res in CELL_RESOLUTIONS}

    def set_cells(self, cells: dict[int, str | None]) -> None:
        for res in CELL_RESOLUTIONS:
            setattr(self, cell_column_name(res), cells.get(res))


def cell_column_name(resolution: int) -> str:
    if resolution not in CELL_RESOLUTIONS:
        raise ValueError(f"no stored cell column for resolution {resolution}")
    return f"h3_res{resolution}"


class Article(Base):
    __tablename__ = "article"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    text: Mapped[str] = mapped_column(Text, nullable=False)


class DescriptionJudgment(Base):
    __tablename__ = "description_judgment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    # Ordered; an empty list records "no article applies".
    article_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    article_codes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class LocationJudgment(SpatialCellsMixin, Base):
    __tablename__ = "location_judgment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    jurisdiction_id: Mapped[int] = mapped_column(Integer, nullable=False)
    location: Mapped[str] = mapped_column(Text, nullable=False)
    canonical_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    is_electronic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    method: Mapped[GeocodingMethod] = mapped_column(
        Enum(GeocodingMethod, native_enum=False), nullable=False, default=GeocodingMethod.manual
    )
    confidence: Mapped[ConfidenceTier] = mapped_column(
        Enum(ConfidenceTier, native_enum=False), nullable=False, default=ConfidenceTier.exact
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("jurisdiction_id", "location", name="uq_location_judgment_jurisdiction_location"),
    )


class Offense(SpatialCellsMixin, Base):
    """
    One infraction record as written by the acquisition side.

    Only the enrichment columns (article ids/codes, canonical location, point,
    electronic flag and cells) are written here.
    """

    __tablename__ = "offense"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    jurisdiction_id: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    article_ids: Mapped[list | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    article_codes: Mapped[list | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    canonical_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_electronic: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    __table_args__ = (
        Index("ix_offense_jurisdiction_location", "jurisdiction_id", "location"),
        Index("ix_offense_description", "description"),
    )
