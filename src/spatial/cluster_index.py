"""
Hierarchical point clustering over a Web-Mercator zoom pyramid.

The index is built once per snapshot:

1. Every point becomes a leaf at level ``max_zoom + 1``.
2. For each zoom ``z`` from ``max_zoom`` down to ``min_zoom`` the nodes of
   level ``z + 1`` are merged: an unclaimed node absorbs every unclaimed
   neighbour within ``radius`` pixels at zoom ``z``. Neighbours come from a
   KD-tree over the finer level, never from a rescan of the raw points.
3. A merged cluster's centroid is the count-weighted mean of its children's
   centroids, so the approximation accumulates level by level.

Queries then read a single level: viewport lookups are KD-tree range
searches, and leaf expansion walks the stored children depth-first.

Cluster ids embed the build id in their high bits, so an id handed out by
one build is never valid in another.
"""

from __future__ import annotations

import itertools
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.neighbors import KDTree

from src.errors import InvalidParameter, InvalidViewport, UnknownCluster
from src.store.points import Point, Snapshot

from .projection import clamp_lat, lat_to_y, lng_to_x, normalize_lng, x_to_lng, y_to_lat

logger = logging.getLogger(__name__)


# Bits below the build id in a cluster id: (origin_index << 5) + zoom + 1
ID_BUILD_SHIFT = 32
ZOOM_BITS = 5
MAX_SUPPORTED_ZOOM = (1 << ZOOM_BITS) - 2

KDTREE_LEAF_SIZE = 64

_BUILD_IDS = itertools.count(1)


@dataclass(frozen=True)
class ClusterIndexConfig:
    """Clustering parameters. Constants of the deployment, not of the data."""

    radius: float = 25.0
    """Merge radius in pixels at each zoom level."""

    extent: int = 512
    """Tile extent in pixels used to convert the radius to projected units."""

    min_zoom: int = 0
    """Coarsest level that is built."""

    max_zoom: int = 20
    """Finest level at which points still aggregate."""

    min_points: int = 2
    """Minimum constituents for an aggregate to be formed."""

    def validate(self) -> None:
        if self.radius <= 0:
            raise ValueError(f"radius must be positive, got {self.radius}")
        if self.extent <= 0:
            raise ValueError(f"extent must be positive, got {self.extent}")
        if not 0 <= self.min_zoom <= self.max_zoom <= MAX_SUPPORTED_ZOOM:
            raise ValueError(
                f"Need 0 <= min_zoom <= max_zoom <= {MAX_SUPPORTED_ZOOM}, "
                f"got min_zoom={self.min_zoom}, max_zoom={self.max_zoom}"
            )
        if self.min_points < 2:
            raise ValueError(f"min_points must be at least 2, got {self.min_points}")


@dataclass(frozen=True, eq=False)
class ClusterNode:
    """A leaf (one point) or an aggregate of finer nodes."""

    x: float
    """Projected x of the centroid, [0, 1]."""

    y: float
    """Projected y of the centroid, [0, 1]."""

    count: int
    """Number of points beneath this node."""

    zoom: int
    """Zoom at which the aggregate was formed (``max_zoom + 1`` for leaves)."""

    id: Optional[int] = None
    """Cluster id, scoped to one build. ``None`` for leaves."""

    point: Optional[Point] = None
    """The wrapped point, for leaves only."""

    children: Tuple["ClusterNode", ...] = field(default=(), repr=False)
    """Direct children one level finer, origin node first."""

    @property
    def is_cluster(self) -> bool:
        return self.point is None

    @property
    def lng(self) -> float:
        return self.point.lng if self.point is not None else x_to_lng(self.x)

    @property
    def lat(self) -> float:
        return self.point.lat if self.point is not None else y_to_lat(self.y)


class _Level:
    """Nodes of one zoom level plus a KD-tree over their projected positions."""

    __slots__ = ("zoom", "nodes", "coords", "tree")

    def __init__(self, zoom: int, nodes: List[ClusterNode]):
        self.zoom = zoom
        self.nodes = nodes
        self.coords = np.array([(n.x, n.y) for n in nodes], dtype=float).reshape(-1, 2)
        self.tree = KDTree(self.coords, leaf_size=KDTREE_LEAF_SIZE) if nodes else None

    def neighbours(self, i: int, radius: float) -> np.ndarray:
        """Sorted indices within ``radius`` of node ``i``, including ``i`` itself."""
        if self.tree is None:
            return np.empty(0, dtype=int)
        return np.sort(self.tree.query_radius(self.coords[i : i + 1], r=radius)[0])

    def range(self, min_x: float, min_y: float, max_x: float, max_y: float) -> np.ndarray:
        """Sorted indices of nodes inside the projected rectangle."""
        if self.tree is None:
            return np.empty(0, dtype=int)

        centre = [[(min_x + max_x) / 2.0, (min_y + max_y) / 2.0]]
        half_diagonal = math.hypot((max_x - min_x) / 2.0, (max_y - min_y) / 2.0)
        candidates = self.tree.query_radius(centre, r=half_diagonal * (1.0 + 1e-9) + 1e-12)[0]
        if len(candidates) == 0:
            return candidates

        xs = self.coords[candidates, 0]
        ys = self.coords[candidates, 1]
        inside = (xs >= min_x) & (xs <= max_x) & (ys >= min_y) & (ys <= max_y)
        return np.sort(candidates[inside])


def _normalize_bbox(bbox: Sequence[float]) -> List[Tuple[float, float, float, float]]:
    """
    Validate ``[west, south, east, north]`` and split it at the anti-meridian.

    Returns one or two boxes with longitudes inside [-180, 180].
    """
    try:
        west, south, east, north = (float(v) for v in bbox)
    except (TypeError, ValueError) as exc:
        raise InvalidViewport("bbox must be four numbers: west,south,east,north") from exc

    if not all(math.isfinite(v) for v in (west, south, east, north)):
        raise InvalidViewport("bbox values must be finite")
    if south > north:
        raise InvalidViewport(f"bbox south ({south}) is above north ({north})")

    south, north = clamp_lat(south), clamp_lat(north)

    if east - west >= 360.0:
        return [(-180.0, south, 180.0, north)]
    if west == east:
        raise InvalidViewport("bbox has zero width")
    if west > east and not (west > 0.0 and east < 0.0):
        raise InvalidViewport(
            f"bbox west ({west}) is east of east ({east}) without crossing the anti-meridian"
        )

    min_lng = normalize_lng(west)
    max_lng = 180.0 if east == 180.0 else normalize_lng(east)

    if min_lng == max_lng:
        raise InvalidViewport("bbox has zero width after wrapping")
    if min_lng > max_lng:
        return [(min_lng, south, 180.0, north), (-180.0, south, max_lng, north)]
    return [(min_lng, south, max_lng, north)]


class ClusterIndex:
    """Immutable multi-zoom cluster index over one snapshot."""

    def __init__(
        self,
        snapshot: Snapshot,
        config: ClusterIndexConfig,
        build_id: int,
        levels: Dict[int, _Level],
        clusters: Dict[int, ClusterNode],
    ):
        self.snapshot = snapshot
        self.config = config
        self.build_id = build_id
        self._levels = levels
        self._clusters = clusters

    # -----------------------------
    # Build
    # -----------------------------

    @classmethod
    def build(cls, snapshot: Snapshot, config: Optional[ClusterIndexConfig] = None) -> "ClusterIndex":
        """Build every zoom level from ``snapshot``, finest first."""
        config = config or ClusterIndexConfig()
        config.validate()

        build_id = next(_BUILD_IDS)
        started = time.perf_counter()

        points = snapshot.points
        xs = lng_to_x([p.lng for p in points])
        ys = lat_to_y([p.lat for p in points])
        leaf_zoom = config.max_zoom + 1
        leaves = [
            ClusterNode(x=float(x), y=float(y), count=1, zoom=leaf_zoom, point=p)
            for p, x, y in zip(points, xs, ys)
        ]

        levels: Dict[int, _Level] = {leaf_zoom: _Level(leaf_zoom, leaves)}
        clusters: Dict[int, ClusterNode] = {}
        for zoom in range(config.max_zoom, config.min_zoom - 1, -1):
            nodes = cls._cluster_level(levels[zoom + 1], zoom, config, build_id, clusters)
            levels[zoom] = _Level(zoom, nodes)

        index = cls(snapshot, config, build_id, levels, clusters)
        logger.info(
            "Built cluster index #%d: %d points, %d clusters, %d nodes at z%d (%.1f ms)",
            build_id,
            len(points),
            len(clusters),
            len(levels[config.min_zoom].nodes),
            config.min_zoom,
            (time.perf_counter() - started) * 1000.0,
        )
        return index

    @staticmethod
    def _cluster_level(
        finer: _Level,
        zoom: int,
        config: ClusterIndexConfig,
        build_id: int,
        clusters: Dict[int, ClusterNode],
    ) -> List[ClusterNode]:
        nodes = finer.nodes
        if not nodes:
            return []

        radius = config.radius / (config.extent * (2 ** zoom))
        claimed = np.zeros(len(nodes), dtype=bool)
        merged: List[ClusterNode] = []

        for i, node in enumerate(nodes):
            if claimed[i]:
                continue
            claimed[i] = True

            candidates = [int(j) for j in finer.neighbours(i, radius) if not claimed[j]]
            total = node.count + sum(nodes[j].count for j in candidates)

            if candidates and total >= config.min_points:
                wx = node.x * node.count
                wy = node.y * node.count
                for j in candidates:
                    claimed[j] = True
                    wx += nodes[j].x * nodes[j].count
                    wy += nodes[j].y * nodes[j].count

                cluster_id = (build_id << ID_BUILD_SHIFT) | ((i << ZOOM_BITS) + zoom + 1)
                cluster = ClusterNode(
                    x=wx / total,
                    y=wy / total,
                    count=total,
                    zoom=zoom,
                    id=cluster_id,
                    children=(node, *(nodes[j] for j in candidates)),
                )
                clusters[cluster_id] = cluster
                merged.append(cluster)
            else:
                merged.append(node)
                # Too few to aggregate: neighbours pass through unmerged
                for j in candidates:
                    claimed[j] = True
                    merged.append(nodes[j])

        return merged

    # -----------------------------
    # Queries
    # -----------------------------

    def _resolve_zoom(self, zoom) -> int:
        try:
            z = math.floor(float(zoom))
        except (TypeError, ValueError, OverflowError) as exc:
            raise InvalidViewport(f"zoom must be a finite number, got {zoom!r}") from exc
        if z < 0 or z > self.config.max_zoom:
            raise InvalidViewport(f"zoom {zoom} outside [0, {self.config.max_zoom}]")
        return max(z, self.config.min_zoom)

    def query(self, bbox: Sequence[float], zoom) -> List[ClusterNode]:
        """Return every cluster or leaf inside ``bbox`` at ``zoom`` (floored)."""
        boxes = _normalize_bbox(bbox)
        level = self._levels[self._resolve_zoom(zoom)]

        results: List[ClusterNode] = []
        for min_lng, min_lat, max_lng, max_lat in boxes:
            ids = level.range(
                float(lng_to_x(min_lng)),
                float(lat_to_y(max_lat)),
                float(lng_to_x(max_lng)),
                float(lat_to_y(min_lat)),
            )
            results.extend(level.nodes[i] for i in ids)
        return results

    def get_cluster(self, cluster_id) -> ClusterNode:
        """Look up an aggregate by id or raise :class:`UnknownCluster`."""
        try:
            key = int(cluster_id)
        except (TypeError, ValueError) as exc:
            raise UnknownCluster(f"Invalid cluster id {cluster_id!r}") from exc

        node = self._clusters.get(key)
        if node is None:
            owner = key >> ID_BUILD_SHIFT
            if owner != self.build_id:
                raise UnknownCluster(
                    f"Cluster {key} is not from the current index build #{self.build_id}"
                )
            raise UnknownCluster(f"Cluster {key} does not exist")
        return node

    def expand(self, cluster_id, limit: Optional[int] = None, offset: int = 0) -> List[Point]:
        """
        Leaf points of a cluster in depth-first order.

        Args:
            cluster_id: id from :meth:`query` on this index
            limit: maximum points to return; ``None`` for all
            offset: leading points to skip
        """
        node = self.get_cluster(cluster_id)
        if limit is not None and limit < 0:
            raise InvalidParameter(f"limit must be >= 0, got {limit}")
        if offset < 0:
            raise InvalidParameter(f"offset must be >= 0, got {offset}")

        stop = None if limit is None else offset + limit
        return list(itertools.islice(self._iter_leaves(node), offset, stop))

    def children(self, cluster_id) -> List[ClusterNode]:
        """Direct children of a cluster, one zoom level finer."""
        return list(self.get_cluster(cluster_id).children)

    def expansion_zoom(self, cluster_id) -> int:
        """
        Zoom at which the cluster breaks apart into its children.

        Capped at ``max_zoom``: a cluster formed there (e.g. co-located points)
        never splits on the map and has to be expanded instead.
        """
        return min(self.get_cluster(cluster_id).zoom + 1, self.config.max_zoom)

    @staticmethod
    def _iter_leaves(node: ClusterNode) -> Iterator[Point]:
        stack = [node]
        while stack:
            current = stack.pop()
            if current.point is not None:
                yield current.point
            else:
                stack.extend(reversed(current.children))

    # -----------------------------
    # Introspection
    # -----------------------------

    @property
    def cluster_count(self) -> int:
        return len(self._clusters)

    def nodes_at(self, zoom: int) -> List[ClusterNode]:
        """All top-level nodes of a zoom level (whole world)."""
        return list(self._levels[self._resolve_zoom(zoom)].nodes)

    def stats(self) -> Dict[str, int]:
        return {
            "build_id": self.build_id,
            "points": len(self.snapshot),
            "clusters": self.cluster_count,
            "min_zoom": self.config.min_zoom,
            "max_zoom": self.config.max_zoom,
        }


__all__ = [
    "ClusterIndex",
    "ClusterIndexConfig",
    "ClusterNode",
    "ID_BUILD_SHIFT",
]
