"""
Lexical name search over one or more point catalogs.

Scoring is a fixed ladder evaluated against the lower-cased display name:
exact match, prefix, substring, then word prefix. Higher scores sort first;
equal scores keep snapshot order, so identical input always yields identical
output.

When several catalogs are searched together (for example a city gazetteer
and the entity catalog) each one is capped on its own before the merge, and
the merged list is capped again. A catalog with a small cap therefore keeps
its share of the combined result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from src.errors import EmptyQuery
from src.store.points import Point, Snapshot

logger = logging.getLogger(__name__)


SCORE_EXACT = 100
SCORE_PREFIX = 80
SCORE_CONTAINS = 60
SCORE_WORD_PREFIX = 40

DEFAULT_MAX_RESULTS = 25


@dataclass(frozen=True)
class SearchConfig:
    """Result caps for combined search."""

    entity_cap: int = 20
    """Maximum entries taken from the entity catalog."""

    place_cap: int = 5
    """Maximum entries taken from the place gazetteer."""

    max_results: int = DEFAULT_MAX_RESULTS
    """Maximum entries in the merged result."""

    def validate(self) -> None:
        for name in ("entity_cap", "place_cap", "max_results"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")


@dataclass(frozen=True)
class Catalog:
    """A snapshot searched under one category tag with its own cap."""

    category: str
    snapshot: Snapshot
    cap: Optional[int] = None


@dataclass(frozen=True)
class SearchResultEntry:
    point: Point
    score: int
    category: str

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "type": self.category,
            "id": self.point.id,
            "name": self.point.name,
            "coordinates": list(self.point.coordinates),
            "score": self.score,
        }
        for key, value in self.point.attributes.items():
            data.setdefault(key, value)
        return data


def normalize_query(query: Optional[str]) -> str:
    """Trim and lower-case ``query``; raise :class:`EmptyQuery` when blank."""
    term = (query or "").strip().lower()
    if not term:
        raise EmptyQuery("Search query is empty")
    return term


def score_name(name: str, term: str) -> int:
    """
    Score a display name against an already-normalised term.

    Returns 0 when the name does not match at all.

    Examples:
        >>> score_name("LakeA", "lakea")
        100
        >>> score_name("North LakeA Reservoir", "lakea")
        60
    """
    lowered = name.lower()
    if lowered == term:
        return SCORE_EXACT
    if lowered.startswith(term):
        return SCORE_PREFIX
    if term in lowered:
        return SCORE_CONTAINS
    if any(word.startswith(term) for word in lowered.split()):
        return SCORE_WORD_PREFIX
    return 0


def rank_catalog(term: str, catalog: Catalog) -> List[SearchResultEntry]:
    """Matching entries of one catalog, best first, truncated to its cap."""
    matches = []
    for point in catalog.snapshot.points:
        score = score_name(point.name, term)
        if score > 0:
            matches.append(SearchResultEntry(point=point, score=score, category=catalog.category))

    # sorted() is stable: ties keep snapshot order
    ranked = sorted(matches, key=lambda entry: entry.score, reverse=True)
    if catalog.cap is not None:
        ranked = ranked[: catalog.cap]
    return ranked


def search(
    query: Optional[str],
    catalogs: Sequence[Catalog],
    *,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> List[SearchResultEntry]:
    """
    Rank points from ``catalogs`` against ``query``.

    Args:
        query: free text, trimmed and lower-cased before matching
        catalogs: catalogs in priority order (earlier wins score ties)
        max_results: cap on the merged list

    Returns:
        Entries sorted by score, highest first

    Raises:
        EmptyQuery: if the trimmed query is empty
    """
    term = normalize_query(query)

    merged: List[SearchResultEntry] = []
    for catalog in catalogs:
        merged.extend(rank_catalog(term, catalog))

    results = sorted(merged, key=lambda entry: entry.score, reverse=True)[:max_results]

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Search %r over %s: %d candidates, %d returned",
            term,
            [c.category for c in catalogs],
            len(merged),
            len(results),
        )
    return results


__all__ = [
    "SCORE_EXACT",
    "SCORE_PREFIX",
    "SCORE_CONTAINS",
    "SCORE_WORD_PREFIX",
    "Catalog",
    "SearchConfig",
    "SearchResultEntry",
    "normalize_query",
    "rank_catalog",
    "score_name",
    "search",
]
