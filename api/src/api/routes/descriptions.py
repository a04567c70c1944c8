"""Description curation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from api.deps import Classifier, DbSession
from curation_service.queue import description_queue
from curation_service.settings import settings as curation_settings
from multas_core.errors import UnknownArticleError
from multas_core.store import JudgmentStore

router = APIRouter()


class SuggestionItem(BaseModel):
    article_id: str
    score: float
    text: str


class SegmentSuggestions(BaseModel):
    segment: str
    suggestions: list[SuggestionItem]


class SuggestResponse(BaseModel):
    description: str
    judged: bool
    multi_article: bool
    suggestions: list[SuggestionItem]
    segments: list[SegmentSuggestions]


class ClassifyRequest(BaseModel):
    description: str
    article_ids: list[str]


class ClassifyResponse(BaseModel):
    description: str
    article_ids: list[str]
    article_codes: list[int]


class QueueItem(BaseModel):
    description: str
    offenses: int


@router.get("/suggest", response_model=SuggestResponse)
def suggest(
    classifier: Classifier,
    description: str = Query(..., min_length=1),
    threshold: float = Query(curation_settings.classifier_threshold, ge=0.0, le=1.0),
):
    """Ranked article suggestions, with a per-segment breakdown for composite descriptions."""
    multi = classifier.detect_multi_article(description, threshold)
    segments = (
        [
            SegmentSuggestions(
                segment=bd.segment,
                suggestions=[SuggestionItem(article_id=s.article_id, score=s.score, text=s.text) for s in bd.suggestions],
            )
            for bd in classifier.suggest_with_breakdown(description, threshold)
        ]
        if multi
        else []
    )
    return SuggestResponse(
        description=description,
        judged=classifier.judged_articles(description) is not None,
        multi_article=multi,
        suggestions=[
            SuggestionItem(article_id=s.article_id, score=s.score, text=s.text)
            for s in classifier.suggest(description, threshold)
        ],
        segments=segments,
    )


@router.post("/classify", response_model=ClassifyResponse)
def classify(body: ClassifyRequest, db: DbSession):
    """Record a description judgment; the next suggestion sees it."""
    try:
        row = JudgmentStore(db).save_description(body.description, body.article_ids)
    except (UnknownArticleError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return ClassifyResponse(
        description=row.description, article_ids=list(row.article_ids), article_codes=list(row.article_codes)
    )


@router.get("/queue", response_model=list[QueueItem])
def queue(db: DbSession, limit: int = Query(100, ge=1, le=1000)):
    """Unjudged descriptions by number of affected offenses."""
    return [QueueItem(description=i.description, offenses=i.offenses) for i in description_queue(db, limit=limit)]
