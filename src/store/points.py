"""Immutable point and snapshot containers shared by the index and ranker."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple


_SNAPSHOT_VERSIONS = itertools.count(1)


def next_snapshot_version() -> int:
    """Return a process-wide, strictly increasing snapshot version."""
    return next(_SNAPSHOT_VERSIONS)


@dataclass(frozen=True)
class Point:
    """A named, geolocated entity."""

    id: str
    """Identifier, unique within one snapshot."""

    name: str
    """Display name used for search."""

    lng: float
    """Longitude in decimal degrees, [-180, 180]."""

    lat: float
    """Latitude in decimal degrees, [-90, 90]."""

    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), hash=False)
    """Extra read-only fields (description, logo URL, ...). Not indexed."""

    @property
    def coordinates(self) -> Tuple[float, float]:
        """GeoJSON ordering: ``(lng, lat)``."""
        return (self.lng, self.lat)

    def to_properties(self) -> Dict[str, Any]:
        """Flatten into a GeoJSON ``properties`` mapping."""
        props: Dict[str, Any] = {"id": self.id, "name": self.name}
        for key, value in self.attributes.items():
            props.setdefault(key, value)
        return props


@dataclass(frozen=True)
class Snapshot:
    """An ordered, immutable set of points loaded at one instant."""

    version: int
    points: Tuple[Point, ...]
    category: str = "entity"
    source: str = ""
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[Point]:
        return iter(self.points)

    def get(self, point_id: str) -> Optional[Point]:
        for point in self.points:
            if point.id == point_id:
                return point
        return None

    @classmethod
    def from_points(
        cls,
        points,
        *,
        category: str = "entity",
        source: str = "memory",
    ) -> "Snapshot":
        """Wrap already-validated points in a new snapshot version."""
        return cls(
            version=next_snapshot_version(),
            points=tuple(points),
            category=category,
            source=source,
        )
