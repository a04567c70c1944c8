"""
Description Classifier.

Suggests normative articles for a free-text infraction description by cosine
similarity over term-frequency vectors. Human judgments act as an oracle:
a description that was already judged returns exactly its judged articles at
score 1.0, and every judged description also contributes a vector, so later
variants of the same wording match it.

A classifier is an immutable snapshot. Build a new one (``from_session``)
after the underlying articles or judgments change; never mutate one in place.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from sqlalchemy.orm import Session

from multas_core.db.models import Article, DescriptionJudgment
from multas_core.errors import UnknownArticleError
from multas_core.store import JudgmentStore
from multas_core.text import fold, split_segments, tokenize

# Scores closer than this are treated as equal.
SCORE_EPSILON = 1e-9


@dataclass(frozen=True)
class Suggestion:
    article_id: str
    score: float
    text: str


@dataclass(frozen=True)
class Breakdown:
    segment: str
    suggestions: tuple[Suggestion, ...]

    @property
    def top_score(self) -> float:
        return self.suggestions[0].score if self.suggestions else 0.0


@dataclass(frozen=True)
class Classification:
    article_ids: tuple[str, ...]
    article_codes: tuple[int, ...]


@dataclass(frozen=True)
class MultiArticleResolution:
    article_ids: tuple[str, ...] = ()
    article_codes: tuple[int, ...] = ()
    found: bool = False


ClassifyFn = Callable[[str], "Classification | None"]


@dataclass(frozen=True)
class _CatalogArticle:
    id: str
    code: int
    text: str


@dataclass(frozen=True)
class _Entry:
    article_ids: tuple[str, ...]
    vector: Mapping[str, int]
    norm: float


def vectorize(text: str | None) -> dict[str, int]:
    return dict(Counter(tokenize(text)))


def _norm(vector: Mapping[str, int]) -> float:
    return math.sqrt(sum(v * v for v in vector.values()))


def cosine_similarity(a: Mapping[str, int], b: Mapping[str, int]) -> float:
    na, nb = _norm(a), _norm(b)
    if na == 0 or nb == 0:
        return 0.0
    if len(a) > len(b):
        a, b = b, a
    dot = sum(v * b.get(k, 0) for k, v in a.items())
    return dot / (na * nb)


class DescriptionClassifier:
    def __init__(
        self,
        articles: Iterable[tuple[str, int, str]],
        judgments: Iterable[tuple[str, Iterable[str]]] = (),
    ) -> None:
        """
        ``articles`` is ``(id, code, text)``; ``judgments`` is ``(description, article_ids)``.

        Raises ``UnknownArticleError`` when a judgment references an article
        that is not in the catalog.
        """
        catalog = {a_id: _CatalogArticle(a_id, code, text) for a_id, code, text in articles}
        self._articles: Mapping[str, _CatalogArticle] = MappingProxyType(catalog)

        entries: list[_Entry] = []
        for article in catalog.values():
            vec = MappingProxyType(vectorize(article.text))
            entries.append(_Entry((article.id,), vec, _norm(vec)))

        judged: dict[str, tuple[str, ...]] = {}
        for description, article_ids in judgments:
            ids = tuple(article_ids)
            for a_id in ids:
                if a_id not in catalog:
                    raise UnknownArticleError(a_id)
            key = fold(description)
            if not key:
                continue
            judged[key] = ids
            if ids:
                vec = MappingProxyType(vectorize(description))
                entries.append(_Entry(ids, vec, _norm(vec)))

        self._judged: Mapping[str, tuple[str, ...]] = MappingProxyType(judged)
        self._entries: tuple[_Entry, ...] = tuple(entries)

    @classmethod
    def from_session(cls, session: Session) -> "DescriptionClassifier":
        store = JudgmentStore(session)
        articles: list[Article] = store.list_articles()
        judgments: list[DescriptionJudgment] = store.list_descriptions()
        return cls(
            ((a.id, a.code, a.text) for a in articles),
            ((d.description, d.article_ids or []) for d in judgments),
        )

    @property
    def article_count(self) -> int:
        return len(self._articles)

    @property
    def judgment_count(self) -> int:
        return len(self._judged)

    def judged_articles(self, text: str) -> tuple[str, ...] | None:
        """Articles of a judged description matching ``text`` after folding, else None."""
        return self._judged.get(fold(text))

    def _codes_for(self, article_ids: Iterable[str]) -> tuple[int, ...]:
        codes: list[int] = []
        for a_id in article_ids:
            code = self._articles[a_id].code
            if code not in codes:
                codes.append(code)
        return tuple(codes)

    def suggest(self, text: str, threshold: float) -> list[Suggestion]:
        if not text or not text.strip():
            return []

        judged = self.judged_articles(text)
        if judged is not None:
            return [Suggestion(a_id, 1.0, self._articles[a_id].text) for a_id in sorted(judged)]

        query = vectorize(text)
        q_norm = _norm(query)
        if q_norm == 0:
            return []

        best: dict[str, float] = {}
        for entry in self._entries:
            if entry.norm == 0:
                continue
            dot = sum(v * entry.vector.get(k, 0) for k, v in query.items())
            score = dot / (q_norm * entry.norm)
            if score < threshold or score <= 0:
                continue
            for a_id in entry.article_ids:
                if score > best.get(a_id, -1.0):
                    best[a_id] = score

        ranked = sorted(best.items(), key=lambda kv: (-kv[1], kv[0]))
        return [Suggestion(a_id, score, self._articles[a_id].text) for a_id, score in ranked]

    def top_score(self, text: str, threshold: float) -> float:
        suggestions = self.suggest(text, threshold)
        return suggestions[0].score if suggestions else 0.0

    def suggest_with_breakdown(self, text: str, threshold: float) -> list[Breakdown]:
        return [
            Breakdown(segment, tuple(self.suggest(segment, threshold)))
            for segment in split_segments(text)
        ]

    def detect_multi_article(self, text: str, threshold: float) -> bool:
        """
        True when the description reads better as several comma-separated offenses.

        Needs at least two non-empty segments, and some segment must match
        strictly better than the whole text does. A tie keeps the single
        reading.
        """
        segments = split_segments(text)
        if len(segments) < 2:
            return False
        whole = self.top_score(text, threshold)
        return any(self.top_score(s, threshold) > whole + SCORE_EPSILON for s in segments)

    def classify(self, part: str, threshold: float) -> Classification | None:
        """Known judgment first, then the best similarity suggestion at or above ``threshold``."""
        judged = self.judged_articles(part)
        if judged is not None:
            return Classification(judged, self._codes_for(judged))
        suggestions = self.suggest(part, threshold)
        if not suggestions:
            return None
        top = suggestions[0].article_id
        return Classification((top,), self._codes_for((top,)))

    def classify_fn(self, threshold: float) -> ClassifyFn:
        return lambda part: self.classify(part, threshold)

    def judgment_lookup(self) -> ClassifyFn:
        """Classify only through persisted judgments; no similarity fallback."""

        def lookup(part: str) -> Classification | None:
            judged = self.judged_articles(part)
            if judged is None:
                return None
            return Classification(judged, self._codes_for(judged))

        return lookup


def resolve_multi_article(description: str, classify_fn: ClassifyFn) -> MultiArticleResolution:
    """
    Resolve a comma-separated composite description part by part.

    ``found`` is true only if there is at least one non-empty part and every
    part classifies; otherwise the result is empty. Ids and codes keep part
    order with duplicates dropped.
    """
    parts = split_segments(description)
    if not parts:
        return MultiArticleResolution()

    ids: list[str] = []
    codes: list[int] = []
    for part in parts:
        result = classify_fn(part)
        if result is None:
            return MultiArticleResolution()
        for a_id in result.article_ids:
            if a_id not in ids:
                ids.append(a_id)
        for code in result.article_codes:
            if code not in codes:
                codes.append(code)
    return MultiArticleResolution(tuple(ids), tuple(codes), True)
