"""
Point store adapters.

A store turns an external source (a JSON/CSV file, or the entity store's
read-only HTTP endpoint) into a :class:`~src.store.points.Snapshot`. Loading
is all-or-nothing: a single bad record rejects the whole load.

Accepted record shapes:

- entity store rows ``{id, name, latitude, longitude, description?}``
- GeoJSON-like rows ``{name, coordinates: [lng, lat], ...}``
- a GeoJSON ``FeatureCollection`` of ``Point`` features
"""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx
import numpy as np
import pandas as pd

from src.errors import SchemaError, SourceUnavailable

from .points import Point, Snapshot, next_snapshot_version

logger = logging.getLogger(__name__)


LNG_KEYS = ("longitude", "lng", "lon")
LAT_KEYS = ("latitude", "lat")
COORDINATE_KEY = "coordinates"

# Rows listed in a SchemaError message before it is truncated
MAX_REPORTED_ROWS = 5


@dataclass
class SourceConfig:
    """Where a catalog is loaded from."""

    location: str
    """File path or http(s) URL."""

    category: str = "entity"
    """Result category tag for this catalog."""

    id_field: str = "id"
    """Record key holding the point id."""

    generate_ids: bool = False
    """Assign ``{category}-{row}`` ids instead of reading ``id_field``."""

    timeout_sec: float = 10.0
    """HTTP timeout (ignored for files)."""


# -----------------------------
# Record validation
# -----------------------------

def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _unwrap_feature_collection(payload: Any) -> Any:
    """Flatten a GeoJSON FeatureCollection into plain records."""

    if not isinstance(payload, dict) or payload.get("type") != "FeatureCollection":
        return payload

    records = []
    for feature in payload.get("features") or []:
        if not isinstance(feature, dict):
            raise SourceUnavailable("FeatureCollection contains a non-object feature")
        record = dict(feature.get("properties") or {})
        geometry = feature.get("geometry") or {}
        if "coordinates" in geometry:
            record[COORDINATE_KEY] = geometry["coordinates"]
        if "id" in feature and "id" not in record:
            record["id"] = feature["id"]
        records.append(record)
    return records


def _first_present(df: pd.DataFrame, keys: Sequence[str]) -> pd.Series:
    """Merge alias columns left to right, first non-null value wins."""

    merged = pd.Series([None] * len(df), index=df.index, dtype=object)
    for key in keys:
        if key in df:
            merged = merged.where(merged.notna(), df[key])
    return merged


def _split_coordinates(df: pd.DataFrame) -> pd.DataFrame:
    lng = _first_present(df, LNG_KEYS)
    lat = _first_present(df, LAT_KEYS)

    if COORDINATE_KEY in df:
        pairs = df[COORDINATE_KEY].map(
            lambda c: c if isinstance(c, (list, tuple)) and len(c) >= 2 else (None, None)
        )
        lng = lng.where(lng.notna(), pairs.map(lambda c: c[0]))
        lat = lat.where(lat.notna(), pairs.map(lambda c: c[1]))

    return pd.DataFrame(
        {
            "lng": lng.map(_to_float).astype(float),
            "lat": lat.map(_to_float).astype(float),
        },
        index=df.index,
    )


def _describe_rows(mask: pd.Series) -> str:
    rows = [int(i) for i in mask[mask].index[:MAX_REPORTED_ROWS]]
    suffix = ", ..." if int(mask.sum()) > MAX_REPORTED_ROWS else ""
    return ", ".join(str(r) for r in rows) + suffix


def records_to_snapshot(
    records: Any,
    *,
    category: str = "entity",
    source: str = "memory",
    id_field: str = "id",
    generate_ids: bool = False,
) -> Snapshot:
    """
    Validate raw records and build a snapshot.

    Raises:
        SourceUnavailable: payload is not a list of objects
        SchemaError: a record misses id/name/coordinates, has invalid
            coordinates, or repeats an id
    """
    records = _unwrap_feature_collection(records)
    if not isinstance(records, list):
        raise SourceUnavailable(
            f"Expected a list of records from {source}, got {type(records).__name__}"
        )
    if any(not isinstance(r, dict) for r in records):
        raise SourceUnavailable(f"Source {source} returned non-object records")

    if not records:
        logger.warning("Source %s returned no %s records", source, category)
        return Snapshot(version=next_snapshot_version(), points=(), category=category, source=source)

    df = pd.DataFrame.from_records(records)

    if generate_ids:
        ids = pd.Series([f"{category}-{i}" for i in range(len(df))], index=df.index)
    elif id_field not in df:
        raise SchemaError(f"Records from {source} have no '{id_field}' field")
    else:
        ids = df[id_field]

    missing_id = ids.map(_is_missing)
    if missing_id.any():
        raise SchemaError(f"Missing '{id_field}' in rows {_describe_rows(missing_id)} of {source}")
    ids = ids.map(str)

    if "name" not in df:
        raise SchemaError(f"Records from {source} have no 'name' field")
    missing_name = df["name"].map(_is_missing)
    if missing_name.any():
        raise SchemaError(f"Missing 'name' in rows {_describe_rows(missing_name)} of {source}")

    coords = _split_coordinates(df)
    not_finite = ~np.isfinite(coords["lng"].to_numpy(dtype=float)) | ~np.isfinite(
        coords["lat"].to_numpy(dtype=float)
    )
    not_finite = pd.Series(not_finite, index=df.index)
    if not_finite.any():
        raise SchemaError(
            f"Missing or non-numeric coordinates in rows {_describe_rows(not_finite)} of {source}"
        )

    out_of_range = (coords["lng"].abs() > 180.0) | (coords["lat"].abs() > 90.0)
    if out_of_range.any():
        raise SchemaError(
            f"Coordinates out of range in rows {_describe_rows(out_of_range)} of {source}"
        )

    duplicated = ids.duplicated(keep="first")
    if duplicated.any():
        raise SchemaError(
            f"Duplicate ids {sorted(set(ids[duplicated]))[:MAX_REPORTED_ROWS]} in {source}"
        )

    consumed = {id_field, "name", COORDINATE_KEY, *LNG_KEYS, *LAT_KEYS}
    points: List[Point] = []
    for row, record in enumerate(records):
        attributes = {
            key: value
            for key, value in record.items()
            if key not in consumed and not _is_missing(value)
        }
        points.append(
            Point(
                id=ids.iat[row],
                name=str(record["name"]),
                lng=float(coords["lng"].iat[row]),
                lat=float(coords["lat"].iat[row]),
                attributes=MappingProxyType(attributes),
            )
        )

    return Snapshot(
        version=next_snapshot_version(),
        points=tuple(points),
        category=category,
        source=source,
    )


# -----------------------------
# Stores
# -----------------------------

class PointStore:
    """Source of snapshots. Subclasses implement :meth:`_fetch_records`."""

    def __init__(self, *, category: str = "entity", id_field: str = "id", generate_ids: bool = False):
        self.category = category
        self.id_field = id_field
        self.generate_ids = generate_ids

    def describe(self) -> str:
        raise NotImplementedError

    def _fetch_records(self) -> Any:
        raise NotImplementedError

    def load(self) -> Snapshot:
        """Read the source once and return a validated snapshot."""
        started = time.perf_counter()
        records = self._fetch_records()
        snapshot = records_to_snapshot(
            records,
            category=self.category,
            source=self.describe(),
            id_field=self.id_field,
            generate_ids=self.generate_ids,
        )
        logger.info(
            "Loaded %d %s points from %s (snapshot v%d, %.1f ms)",
            len(snapshot),
            self.category,
            snapshot.source,
            snapshot.version,
            (time.perf_counter() - started) * 1000.0,
        )
        return snapshot


class FilePointStore(PointStore):
    """Load points from a ``.json`` or ``.csv`` file."""

    def __init__(self, path, **kwargs):
        super().__init__(**kwargs)
        self.path = Path(path)

    def describe(self) -> str:
        return str(self.path)

    def _fetch_records(self) -> Any:
        try:
            if self.path.suffix.lower() == ".csv":
                frame = pd.read_csv(self.path)
                return frame.to_dict(orient="records")
            with self.path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SourceUnavailable(f"Cannot read {self.path}: {exc}") from exc
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
            raise SourceUnavailable(f"Malformed CSV {self.path}: {exc}") from exc


class HttpPointStore(PointStore):
    """Fetch points from the entity store's read-only JSON endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout_sec: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.url = url
        self.timeout_sec = timeout_sec
        self._transport = transport

    def describe(self) -> str:
        return self.url

    def _fetch_records(self) -> Any:
        try:
            with httpx.Client(timeout=self.timeout_sec, transport=self._transport) as client:
                response = client.get(self.url, headers={"Accept": "application/json"})
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"Entity store request to {self.url} failed: {exc}") from exc
        except ValueError as exc:
            raise SourceUnavailable(f"Entity store at {self.url} returned invalid JSON") from exc


def store_from_config(config: SourceConfig) -> PointStore:
    """Pick the adapter for ``config.location`` (URL or file path)."""

    options: Dict[str, Any] = dict(
        category=config.category,
        id_field=config.id_field,
        generate_ids=config.generate_ids,
    )
    if config.location.startswith(("http://", "https://")):
        return HttpPointStore(config.location, timeout_sec=config.timeout_sec, **options)
    return FilePointStore(config.location, **options)


def snapshot_from_points(points: Iterable[Mapping[str, Any]], **kwargs) -> Snapshot:
    """Convenience wrapper for in-memory records (tests, scripts)."""
    return records_to_snapshot(list(points), **kwargs)


__all__ = [
    "SourceConfig",
    "PointStore",
    "FilePointStore",
    "HttpPointStore",
    "records_to_snapshot",
    "snapshot_from_points",
    "store_from_config",
]
