from __future__ import annotations


class MultasError(Exception):
    """Base class for errors raised by the enrichment core."""


class InvalidCellError(MultasError, ValueError):
    def __init__(self, cell: str, reason: str = "not a valid H3 cell") -> None:
        self.cell = cell
        super().__init__(f"invalid cell {cell!r}: {reason}")


class InvalidFilterError(MultasError, ValueError):
    def __init__(self, dimension: str, reason: str = "unknown filter dimension") -> None:
        self.dimension = dimension
        super().__init__(f"{reason}: {dimension!r}")


class InvalidCoordinatesError(MultasError, ValueError):
    def __init__(self, lat: float, lng: float, reason: str) -> None:
        self.lat = lat
        self.lng = lng
        super().__init__(f"invalid coordinates ({lat}, {lng}): {reason}")


class UnknownArticleError(MultasError, LookupError):
    def __init__(self, article_id: str) -> None:
        self.article_id = article_id
        super().__init__(f"unknown article id: {article_id!r}")


class JudgmentNotFoundError(MultasError, LookupError):
    pass


class UnsavedWorkError(MultasError):
    """
    The live store holds more judgments than the portable file.

    Reloading would discard curation work that was never exported, so the
    load stops without touching anything.
    """

    def __init__(self, live: dict[str, int], exported: dict[str, int]) -> None:
        self.live = live
        self.exported = exported
        ahead = ", ".join(
            f"{kind}: {live[kind]} live vs {exported.get(kind, 0)} exported"
            for kind in sorted(live)
            if live[kind] > exported.get(kind, 0)
        )
        super().__init__(f"store has unsaved judgments ({ahead}); export before loading")


class JudgmentsFileError(MultasError):
    """The portable judgments file cannot be read or does not match the schema."""

    def __init__(self, path, reason: str) -> None:
        self.path = path
        super().__init__(f"cannot read judgments file {path}: {reason}")
