"""
Batch classification exchange format.

Suggestions are written out as plain text for a curator to edit (delete wrong
lines, keep right ones) and then fed back in::

    # EXCESO DE VELOCIDAD
    0.87 | 13.3.A | Exceder los límites de velocidad

    # MULTI | EXCESO DE VELOCIDAD, SIN CINTURON
    ## EXCESO DE VELOCIDAD
    1.00 | 13.3.A | Exceder los límites de velocidad
    ## SIN CINTURON
    0.71 | 21.1 | No usar cinturón de seguridad

Every ``# `` header, and every ``## `` segment under a ``# MULTI | `` header,
becomes one judgment holding the article ids of the score lines kept under it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from multas_core.errors import MultasError
from multas_core.store import JudgmentStore

from curation_service.classify.classifier import (
    ClassifyFn,
    DescriptionClassifier,
    MultiArticleResolution,
    Suggestion,
    resolve_multi_article,
)

logger = logging.getLogger(__name__)

MULTI_PREFIX = "# MULTI | "
HEADER_PREFIX = "# "
SEGMENT_PREFIX = "## "
FIELD_SEP = " | "


@dataclass
class ExchangeBlock:
    description: str
    article_ids: list[str] = field(default_factory=list)
    # Composite description a segment block belongs to.
    parent: str | None = None


@dataclass
class IngestReport:
    saved: list[str] = field(default_factory=list)
    skipped_judged: list[str] = field(default_factory=list)
    skipped_empty: list[str] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)


def _score_line(s: Suggestion) -> str:
    return f"{s.score:.2f}{FIELD_SEP}{s.article_id}{FIELD_SEP}{s.text}"


def render_block(classifier: DescriptionClassifier, description: str, threshold: float) -> list[str]:
    """Lines for one description: composite breakdown when it reads as several offenses."""
    if classifier.detect_multi_article(description, threshold):
        lines = [f"{MULTI_PREFIX}{description}"]
        for bd in classifier.suggest_with_breakdown(description, threshold):
            lines.append(f"{SEGMENT_PREFIX}{bd.segment}")
            lines.extend(_score_line(s) for s in bd.suggestions)
        return lines
    suggestions = classifier.suggest(description, threshold)
    if not suggestions:
        return []
    return [f"{HEADER_PREFIX}{description}", *(_score_line(s) for s in suggestions)]


def render_exchange(
    descriptions: Iterable[str],
    classifier: DescriptionClassifier,
    threshold: float,
    *,
    multi: bool = False,
) -> Iterator[str]:
    """
    Exchange lines for a queue of unjudged descriptions.

    With ``multi`` only composite descriptions are emitted, skipping those
    whose every segment is already judged (backfill resolves them). Without
    it only single descriptions that have at least one suggestion.
    """
    for description in descriptions:
        is_multi = classifier.detect_multi_article(description, threshold)
        if is_multi != multi:
            continue
        if is_multi and resolve_multi_article(description, classifier.judgment_lookup()).found:
            continue
        lines = render_block(classifier, description, threshold)
        if not lines:
            continue
        yield from lines
        yield ""


def parse_exchange(lines: Iterable[str]) -> list[ExchangeBlock]:
    blocks: list[ExchangeBlock] = []
    current: ExchangeBlock | None = None
    composite: str | None = None

    for raw in lines:
        line = raw.rstrip("\n")
        if line.startswith(MULTI_PREFIX):
            composite = line[len(MULTI_PREFIX):].strip()
            current = ExchangeBlock(composite)
            blocks.append(current)
        elif line.startswith(SEGMENT_PREFIX):
            # Segment markers only mean something inside a composite.
            if composite is not None:
                current = ExchangeBlock(line[len(SEGMENT_PREFIX):].strip(), parent=composite)
                blocks.append(current)
        elif line.startswith(HEADER_PREFIX):
            composite = None
            current = ExchangeBlock(line[len(HEADER_PREFIX):].strip())
            blocks.append(current)
        elif line.strip() and not line.startswith("#") and current is not None:
            parts = line.split(FIELD_SEP, 2)
            if len(parts) == 3:
                article_id = parts[1].strip()
                if article_id and article_id not in current.article_ids:
                    current.article_ids.append(article_id)

    return [b for b in blocks if b.description]


def ingest_exchange(blocks: Iterable[ExchangeBlock], store: JudgmentStore) -> IngestReport:
    """Persist one judgment per block that kept article lines; per-block failures are reported."""
    report = IngestReport()
    for block in blocks:
        if not block.article_ids:
            report.skipped_empty.append(block.description)
            continue
        if store.is_description_judged(block.description):
            logger.info("skipping already judged description: %r", block.description)
            report.skipped_judged.append(block.description)
            continue
        try:
            store.save_description(block.description, block.article_ids)
        except (MultasError, ValueError) as exc:
            logger.warning("could not save %r: %s", block.description, exc)
            report.errors.append((block.description, str(exc)))
            continue
        report.saved.append(block.description)
    return report


def save_composite(store: JudgmentStore, description: str, classify_fn: ClassifyFn) -> MultiArticleResolution:
    """Judge a composite description from its parts; nothing is written unless every part resolves."""
    resolution = resolve_multi_article(description, classify_fn)
    if resolution.found:
        store.save_description(description, list(resolution.article_ids))
    return resolution
