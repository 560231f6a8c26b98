"""
Search Module for the map index service

Provides deterministic lexical ranking of named points:
- Fixed score ladder (exact, prefix, substring, word prefix)
- Stable tie-breaking by snapshot order
- Per-catalog caps before a global cap for combined searches

Usage:
    from src.search import Catalog, search

    results = search("lake", [
        Catalog("place", places_snapshot, cap=5),
        Catalog("entity", entity_snapshot, cap=20),
    ])
"""

from .ranker import (
    SCORE_CONTAINS,
    SCORE_EXACT,
    SCORE_PREFIX,
    SCORE_WORD_PREFIX,
    Catalog,
    SearchConfig,
    SearchResultEntry,
    normalize_query,
    rank_catalog,
    score_name,
    search,
)

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
