"""
src/spatial: Multi-zoom point clustering and viewport queries.

This module provides a precomputed cluster hierarchy with KD-tree backed
viewport lookups and deterministic leaf expansion.
"""

from .cluster_index import (
    ClusterIndex,
    ClusterIndexConfig,
    ClusterNode,
)
from .projection import lat_to_y, lng_to_x, x_to_lng, y_to_lat

__all__ = [
    "ClusterIndex",
    "ClusterIndexConfig",
    "ClusterNode",
    "lat_to_y",
    "lng_to_x",
    "x_to_lng",
    "y_to_lat",
]
