"""Portable judgment file schema, decoded once at the file boundary."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from multas_core.db.enums import ConfidenceTier, GeocodingMethod
from multas_core.errors import JudgmentsFileError


class ArticleRecord(BaseModel):
    id: str
    text: str
    code: int
    title: str = ""


class DescriptionRecord(BaseModel):
    description: str
    article_ids: list[str] = Field(default_factory=list)
    article_codes: list[int] = Field(default_factory=list)


class LocationRecord(BaseModel):
    jurisdiction_id: int
    location: str
    canonical_location: str | None = None
    lat: float
    lng: float
    is_electronic: bool = False
    method: GeocodingMethod = GeocodingMethod.manual
    confidence: ConfidenceTier = ConfidenceTier.exact
    notes: str | None = None

    @field_validator("method", mode="before")
    @classmethod
    def _parse_method(cls, value):
        if isinstance(value, GeocodingMethod):
            return value
        return GeocodingMethod.parse(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _parse_confidence(cls, value):
        if isinstance(value, ConfidenceTier):
            return value
        return ConfidenceTier.parse(value)


class ExportDocument(BaseModel):
    articles: list[ArticleRecord] = Field(default_factory=list)
    descriptions: list[DescriptionRecord] = Field(default_factory=list)
    locations: list[LocationRecord] = Field(default_factory=list)
    # Newest judgment timestamp in the store when the file was written.
    last_updated: datetime | None = None

    def counts(self) -> dict[str, int]:
        return {
            "articles": len(self.articles),
            "descriptions": len(self.descriptions),
            "locations": len(self.locations),
        }

    def sorted(self) -> "ExportDocument":
        return ExportDocument(
            articles=sorted(self.articles, key=lambda a: a.id),
            descriptions=sorted(self.descriptions, key=lambda d: d.description),
            locations=sorted(self.locations, key=lambda loc: (loc.jurisdiction_id, loc.location)),
            last_updated=self.last_updated,
        )


def read_export(path: Path) -> ExportDocument:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise JudgmentsFileError(path, str(exc)) from exc
    try:
        return ExportDocument.model_validate_json(text)
    except ValidationError as exc:
        raise JudgmentsFileError(path, f"{exc.error_count()} schema error(s)") from exc


def write_export(path: Path, doc: ExportDocument) -> None:
    """Write sorted, indented JSON via a temp file so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(doc.sorted().model_dump(mode="json"), ensure_ascii=False, indent=2) + "\n"
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
