"""
src/store: Point store adapters and immutable snapshots.

Stores load named, geolocated records once and expose them as versioned
:class:`Snapshot` objects consumed by the cluster index and search ranker.
"""

from .points import Point, Snapshot, next_snapshot_version
from .loader import (
    FilePointStore,
    HttpPointStore,
    PointStore,
    SourceConfig,
    records_to_snapshot,
    snapshot_from_points,
    store_from_config,
)

__all__ = [
    "Point",
    "Snapshot",
    "next_snapshot_version",
    "PointStore",
    "FilePointStore",
    "HttpPointStore",
    "SourceConfig",
    "records_to_snapshot",
    "snapshot_from_points",
    "store_from_config",
]
