"""GeoJSON conversion and query-string parsing for the map endpoints."""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Union

from src.errors import InvalidParameter, InvalidViewport, MissingParameter
from src.spatial import ClusterNode
from src.store import Point

from ..schemas.models import ClusterProperties, Feature, FeatureCollection, PointGeometry


def abbreviate_count(count: int) -> Union[int, str]:
    """Short label for marker badges: 999, 1.2k, 15k."""
    if count >= 10000:
        return f"{math.floor(count / 1000 + 0.5)}k"
    if count >= 1000:
        return f"{math.floor(count / 100 + 0.5) / 10:g}k"
    return count


def point_to_feature(point: Point) -> Feature:
    return Feature(
        geometry=PointGeometry(coordinates=[point.lng, point.lat]),
        properties=point.to_properties(),
    )


def node_to_feature(node: ClusterNode) -> Feature:
    if node.point is not None:
        return point_to_feature(node.point)

    properties = ClusterProperties(
        cluster_id=node.id,
        point_count=node.count,
        point_count_abbreviated=abbreviate_count(node.count),
    )
    return Feature(
        id=node.id,
        geometry=PointGeometry(coordinates=[node.lng, node.lat]),
        properties=properties.model_dump(),
    )


def nodes_to_collection(nodes: Iterable[ClusterNode], *, index_version: int) -> FeatureCollection:
    return FeatureCollection(
        features=[node_to_feature(n) for n in nodes],
        index_version=index_version,
    )


def points_to_collection(points: Iterable[Point], *, index_version: int) -> FeatureCollection:
    return FeatureCollection(
        features=[point_to_feature(p) for p in points],
        index_version=index_version,
    )


# -----------------------------
# Query-string parsing
# -----------------------------

def require(value: Optional[str], name: str) -> str:
    if value is None or not value.strip():
        raise MissingParameter(f"Missing {name} parameter")
    return value


def parse_bbox(raw: str) -> List[float]:
    """Parse ``W,S,E,N``."""
    parts = raw.split(",")
    if len(parts) != 4:
        raise InvalidViewport("bbox must be west,south,east,north")
    try:
        return [float(p) for p in parts]
    except ValueError as exc:
        raise InvalidViewport(f"bbox contains a non-numeric value: {raw!r}") from exc


def parse_zoom(raw: str) -> float:
    try:
        zoom = float(raw)
    except ValueError as exc:
        raise InvalidViewport(f"zoom must be a number, got {raw!r}") from exc
    if not math.isfinite(zoom):
        raise InvalidViewport("zoom must be finite")
    return zoom


def parse_optional_int(raw: Optional[str], name: str, *, minimum: int = 0) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise InvalidParameter(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise InvalidParameter(f"{name} must be >= {minimum}")
    return value
