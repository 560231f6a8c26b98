"""Query service: index lifecycle and dispatch to the cluster index and ranker."""

from .query_service import ClusterPage, IndexState, LeafPage, MapQueryService

__all__ = [
    "ClusterPage",
    "IndexState",
    "LeafPage",
    "MapQueryService",
]
