"""
Text folding shared by every free-text match in the project.

Judgments, offense rows and queue entries are compared by their folded form:
lowercased, trimmed, accents removed. Raw text is always what gets stored.
"""

from __future__ import annotations

import re
import unicodedata

_NON_TOKEN_RE = re.compile(r"[^a-z0-9\s]")
_WS_RE = re.compile(r"\s+")


def fold(text: str | None) -> str:
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.strip().lower())
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def collapse_ws(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def tokenize(text: str | None) -> list[str]:
    """Folded alphanumeric tokens; punctuation is dropped, not split on."""
    return _NON_TOKEN_RE.sub("", fold(text)).split()


def split_segments(text: str | None) -> list[str]:
    """Comma-separated segments, trimmed, empty ones dropped."""
    if not text:
        return []
    return [part.strip() for part in text.split(",") if part.strip()]
