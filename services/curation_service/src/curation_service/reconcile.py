"""
Reconciliation between the live judgment store and the portable judgments file.

The file is what gets versioned and shared; the store is where curators work.
``load`` only ever replaces the store wholesale when the file is strictly ahead,
and refuses to run at all when the store holds judgments the file does not.
``backfill`` then projects judgments onto offense records.
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from multas_core.db.models import LocationJudgment, Offense
from multas_core.errors import UnsavedWorkError
from multas_core.export import ExportDocument, read_export, write_export
from multas_core.store import JudgmentStore, as_utc
from multas_core.text import fold

from curation_service.classify.classifier import DescriptionClassifier, resolve_multi_article
from curation_service.settings import settings

logger = logging.getLogger(__name__)

KINDS = ("articles", "descriptions", "locations")


class ReconcileState(str, enum.Enum):
    uninitialized = "uninitialized"
    loaded = "loaded"
    dirty = "dirty"
    exported = "exported"


class LoadAction(str, enum.Enum):
    replaced = "replaced"
    unchanged = "unchanged"


@dataclass(frozen=True)
class LoadResult:
    action: LoadAction
    live: dict[str, int]
    exported: dict[str, int]


@dataclass(frozen=True)
class StatusReport:
    state: ReconcileState
    live: dict[str, int]
    exported: dict[str, int] | None


@dataclass
class Pending:
    records: int = 0
    distinct: int = 0


@dataclass
class BackfillReport:
    locations_updated: int = 0
    descriptions_updated: int = 0
    locations_unjudged: Pending = field(default_factory=Pending)
    locations_unapplied: Pending = field(default_factory=Pending)
    descriptions_unjudged: Pending = field(default_factory=Pending)
    descriptions_unapplied: Pending = field(default_factory=Pending)


def compare_counts(live: dict[str, int], exported: dict[str, int]) -> ReconcileState:
    if any(live[k] > exported.get(k, 0) for k in KINDS):
        return ReconcileState.dirty
    if any(exported.get(k, 0) > live[k] for k in KINDS):
        return ReconcileState.uninitialized
    return ReconcileState.loaded


class _LocationIndex:
    def __init__(self, rows: list[LocationJudgment]) -> None:
        self._by_key = {(r.jurisdiction_id, fold(r.location)): r for r in rows}

    def get(self, jurisdiction_id: int, location: str | None) -> LocationJudgment | None:
        return self._by_key.get((jurisdiction_id, fold(location)))


class ReconciliationController:
    def __init__(self, session: Session, path: Path | None = None) -> None:
        self.session = session
        self.path = path or settings.judgments_file
        self.store_ = JudgmentStore(session)

    def status(self) -> StatusReport:
        live = self.store_.counts()
        if not self.path.exists():
            return StatusReport(ReconcileState.uninitialized, live, None)
        doc = read_export(self.path)
        exported = doc.counts()
        state = compare_counts(live, exported)
        if state is ReconcileState.loaded and self._written_after_last_edit(doc):
            state = ReconcileState.exported
        return StatusReport(state, live, exported)

    def _written_after_last_edit(self, doc: ExportDocument) -> bool:
        live = self.store_.last_updated()
        if live is None:
            return True
        return doc.last_updated is not None and live <= as_utc(doc.last_updated)

    def load(self) -> LoadResult:
        """
        Bring the store up to the file.

        Raises ``UnsavedWorkError`` without touching the store when any live
        count exceeds the file's. Replaces all three tables in one transaction
        when any file count is larger; otherwise does nothing. A missing file
        reads as empty, and an unreadable one raises ``JudgmentsFileError``.
        """
        if self.path.exists():
            doc = read_export(self.path)
        else:
            logger.warning("no judgments file at %s", self.path)
            doc = ExportDocument()
        live = self.store_.counts()
        exported = doc.counts()
        state = compare_counts(live, exported)

        if state is ReconcileState.dirty:
            logger.error("refusing to load %s: live %s, file %s", self.path, live, exported)
            raise UnsavedWorkError(live, exported)

        if state is ReconcileState.loaded:
            logger.info("store already matches %s %s", self.path, live)
            return LoadResult(LoadAction.unchanged, live, exported)

        logger.info("reloading store from %s: live %s, file %s", self.path, live, exported)
        try:
            self.store_.replace_all(doc)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return LoadResult(LoadAction.replaced, live, exported)

    def store(self) -> ExportDocument:
        doc = self.store_.to_export()
        write_export(self.path, doc)
        logger.info("exported %s to %s", doc.counts(), self.path)
        return doc

    def maintain(self, *, batch_size: int | None = None) -> tuple[LoadResult, BackfillReport]:
        """Load then backfill; an aborted load raises before backfill runs."""
        result = self.load()
        return result, self.backfill(batch_size=batch_size)

    def backfill(self, *, batch_size: int | None = None) -> BackfillReport:
        batch_size = batch_size or settings.backfill_batch_size
        report = BackfillReport()
        locations = _LocationIndex(self.store_.list_locations())
        lookup = DescriptionClassifier.from_session(self.session).judgment_lookup()

        report.locations_updated = self._backfill_batches(
            Offense.lat.is_(None), Offense.location, batch_size, lambda o: self._apply_location(o, locations)
        )
        report.descriptions_updated = self._backfill_batches(
            Offense.article_ids.is_(None), Offense.description, batch_size, lambda o: self._apply_description(o, lookup)
        )
        self._count_pending(report, locations, lookup)
        logger.info(
            "backfill: %d locations, %d descriptions updated", report.locations_updated, report.descriptions_updated
        )
        return report

    def _backfill_batches(self, missing, text_col, batch_size: int, apply) -> int:
        updated = 0
        last_id = 0
        while True:
            rows = list(
                self.session.scalars(
                    select(Offense)
                    .where(missing, text_col.is_not(None), text_col != "", Offense.id > last_id)
                    .order_by(Offense.id)
                    .limit(batch_size)
                )
            )
            if not rows:
                break
            for offense in rows:
                if apply(offense):
                    updated += 1
            last_id = rows[-1].id
            self.session.commit()
        return updated

    @staticmethod
    def _apply_location(offense: Offense, locations: _LocationIndex) -> bool:
        judgment = locations.get(offense.jurisdiction_id, offense.location)
        if judgment is None:
            return False
        offense.lat = judgment.lat
        offense.lng = judgment.lng
        offense.is_electronic = judgment.is_electronic
        offense.canonical_location = judgment.canonical_location
        offense.set_cells(judgment.cells())
        return True

    @staticmethod
    def _apply_description(offense: Offense, lookup) -> bool:
        judged = lookup(offense.description)
        if judged is None and "," in offense.description:
            resolution = resolve_multi_article(offense.description, lookup)
            if resolution.found:
                judged = resolution
        if judged is None:
            return False
        offense.article_ids = list(judged.article_ids)
        offense.article_codes = list(judged.article_codes)
        return True

    def _count_pending(self, report: BackfillReport, locations: _LocationIndex, lookup) -> None:
        loc_groups: dict[tuple[int, str], int] = defaultdict(int)
        desc_groups: dict[str, int] = defaultdict(int)
        stmt = select(Offense.jurisdiction_id, Offense.location, Offense.description, Offense.lat, Offense.article_ids).where(
            or_(Offense.lat.is_(None), Offense.article_ids.is_(None))
        )
        for jid, location, description, lat, article_ids in self.session.execute(stmt):
            if lat is None and location:
                loc_groups[(jid, location)] += 1
            if article_ids is None and description:
                desc_groups[description] += 1

        for (jid, location), n in loc_groups.items():
            bucket = report.locations_unapplied if locations.get(jid, location) else report.locations_unjudged
            bucket.records += n
            bucket.distinct += 1

        for description, n in desc_groups.items():
            resolvable = lookup(description) is not None or resolve_multi_article(description, lookup).found
            bucket = report.descriptions_unapplied if resolvable else report.descriptions_unjudged
            bucket.records += n
            bucket.distinct += 1
