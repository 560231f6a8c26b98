"""
Pytest configuration and shared fixtures for map index tests.

This file provides:
- Sample entity and place records
- Snapshot and cluster index fixtures
- In-memory point stores for service tests
"""

import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from src.spatial import ClusterIndex, ClusterIndexConfig
from src.store import PointStore, Snapshot, snapshot_from_points


# ==============================================================================
# Sample Records
# ==============================================================================

@pytest.fixture
def sample_entities() -> List[Dict[str, Any]]:
    """Entities in three groups: Tokyo, Osaka, and around the anti-meridian."""
    return [
        {"id": "e1", "name": "Tokyo Station", "coordinates": [139.7671, 35.6812], "logoUrl": "a.png"},
        {"id": "e2", "name": "Tokyo Tower", "coordinates": [139.7454, 35.6586]},
        {"id": "e3", "name": "Senso-ji Temple", "coordinates": [139.7967, 35.7148]},
        {"id": "e4", "name": "Shibuya Crossing", "coordinates": [139.7005, 35.6595]},
        {"id": "e5", "name": "Osaka Castle", "coordinates": [135.5262, 34.6873]},
        {"id": "e6", "name": "Dotonbori", "coordinates": [135.5013, 34.6687]},
        {"id": "e7", "name": "Taveuni Reef", "coordinates": [179.8, -16.8]},
        {"id": "e8", "name": "Rabi Lagoon", "coordinates": [-179.9, -16.5]},
    ]


@pytest.fixture
def sample_places() -> List[Dict[str, Any]]:
    """Gazetteer rows without ids, as shipped in data/cities.json."""
    return [
        {"name": "Tokyo", "latitude": 35.6895, "longitude": 139.6917, "country": "JP"},
        {"name": "Osaka", "latitude": 34.6937, "longitude": 135.5023, "country": "JP"},
        {"name": "Suva", "latitude": -18.1248, "longitude": 178.4501, "country": "FJ"},
    ]


@pytest.fixture
def entity_snapshot(sample_entities) -> Snapshot:
    return snapshot_from_points(sample_entities, category="entity")


@pytest.fixture
def place_snapshot(sample_places) -> Snapshot:
    return snapshot_from_points(sample_places, category="place", generate_ids=True)


@pytest.fixture
def index_config() -> ClusterIndexConfig:
    return ClusterIndexConfig(radius=40, extent=512, min_zoom=0, max_zoom=16)


@pytest.fixture
def cluster_index(entity_snapshot, index_config) -> ClusterIndex:
    return ClusterIndex.build(entity_snapshot, index_config)


# ==============================================================================
# Files
# ==============================================================================

@pytest.fixture
def entity_file(tmp_path: Path, sample_entities) -> Path:
    path = tmp_path / "entities.json"
    path.write_text(json.dumps(sample_entities), encoding="utf-8")
    return path


@pytest.fixture
def place_file(tmp_path: Path, sample_places) -> Path:
    path = tmp_path / "places.json"
    path.write_text(json.dumps(sample_places), encoding="utf-8")
    return path


# ==============================================================================
# Mock Stores
# ==============================================================================

class MockPointStore(PointStore):
    """Store serving in-memory records; set ``error`` to make loads fail."""

    def __init__(self, records: List[Dict[str, Any]], **kwargs):
        super().__init__(**kwargs)
        self.records = records
        self.error = None
        self.load_count = 0

    def describe(self) -> str:
        return f"mock:{self.category}"

    def _fetch_records(self) -> Any:
        self.load_count += 1
        if self.error is not None:
            raise self.error
        return list(self.records)


@pytest.fixture
def mock_entity_store(sample_entities) -> MockPointStore:
    return MockPointStore(sample_entities, category="entity")


@pytest.fixture
def mock_place_store(sample_places) -> MockPointStore:
    return MockPointStore(sample_places, category="place", generate_ids=True)


@pytest.fixture
def make_store():
    """Factory for stores over arbitrary records."""

    def _make(records: List[Dict[str, Any]], **kwargs) -> MockPointStore:
        return MockPointStore(records, **kwargs)

    return _make
