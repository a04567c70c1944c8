from curation_service.classify.classifier import (
    Breakdown,
    Classification,
    DescriptionClassifier,
    MultiArticleResolution,
    Suggestion,
    resolve_multi_article,
)

__all__ = [
    "Breakdown",
    "Classification",
    "DescriptionClassifier",
    "MultiArticleResolution",
    "Suggestion",
    "resolve_multi_article",
]
