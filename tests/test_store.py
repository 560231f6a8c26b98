"""
Unit Tests for Point Stores (src/store)

Tests record validation, snapshot versioning, and the file/HTTP adapters.
"""

import json
from dataclasses import FrozenInstanceError

import httpx
import pytest

from src.errors import SchemaError, SourceUnavailable
from src.store import (
    FilePointStore,
    HttpPointStore,
    Snapshot,
    SourceConfig,
    records_to_snapshot,
    snapshot_from_points,
    store_from_config,
)


# ==============================================================================
# Record Validation Tests
# ==============================================================================

class TestRecordsToSnapshot:
    """Test turning raw records into snapshots."""

    def test_geojson_style_records(self, sample_entities):
        snapshot = records_to_snapshot(sample_entities)

        assert len(snapshot) == len(sample_entities)
        first = snapshot.points[0]
        assert first.id == "e1"
        assert first.name == "Tokyo Station"
        assert first.coordinates == (139.7671, 35.6812)
        assert first.attributes["logoUrl"] == "a.png"

    def test_entity_store_rows(self):
        rows = [
            {"id": 7, "name": "LakeA", "latitude": 46.5, "longitude": 8.1, "description": "Alpine"},
        ]
        snapshot = records_to_snapshot(rows)

        point = snapshot.points[0]
        assert point.id == "7"
        assert (point.lng, point.lat) == (8.1, 46.5)
        assert dict(point.attributes) == {"description": "Alpine"}

    def test_preserves_source_order(self, sample_entities):
        snapshot = records_to_snapshot(sample_entities)
        assert [p.id for p in snapshot] == [r["id"] for r in sample_entities]

    def test_feature_collection(self):
        payload = {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "id": "f1",
                    "geometry": {"type": "Point", "coordinates": [2.35, 48.85]},
                    "properties": {"name": "Paris"},
                }
            ],
        }
        snapshot = records_to_snapshot(payload)
        assert snapshot.points[0].id == "f1"
        assert snapshot.points[0].coordinates == (2.35, 48.85)

    def test_generated_ids(self, sample_places):
        snapshot = records_to_snapshot(sample_places, category="place", generate_ids=True)
        assert [p.id for p in snapshot] == ["place-0", "place-1", "place-2"]
        assert snapshot.category == "place"

    def test_empty_source_is_allowed(self):
        snapshot = records_to_snapshot([])
        assert len(snapshot) == 0

    def test_versions_increase(self, sample_entities):
        a = records_to_snapshot(sample_entities)
        b = records_to_snapshot(sample_entities)
        assert b.version > a.version

    def test_missing_name_rejected(self):
        with pytest.raises(SchemaError, match="name"):
            records_to_snapshot([
                {"id": "a", "name": "Ok", "coordinates": [0, 0]},
                {"id": "b", "name": "  ", "coordinates": [1, 1]},
            ])

    def test_missing_id_rejected(self):
        with pytest.raises(SchemaError):
            records_to_snapshot([{"name": "No id", "coordinates": [0, 0]}])

    def test_missing_coordinates_rejected(self):
        with pytest.raises(SchemaError, match="coordinates"):
            records_to_snapshot([{"id": "a", "name": "Nowhere"}])

    def test_non_numeric_coordinates_rejected(self):
        with pytest.raises(SchemaError):
            records_to_snapshot([{"id": "a", "name": "Bad", "latitude": "north", "longitude": 3}])

    def test_out_of_range_rejected(self):
        with pytest.raises(SchemaError, match="out of range"):
            records_to_snapshot([{"id": "a", "name": "Far", "coordinates": [181.0, 0.0]}])

    def test_duplicate_ids_rejected(self):
        with pytest.raises(SchemaError, match="Duplicate"):
            records_to_snapshot([
                {"id": "a", "name": "One", "coordinates": [0, 0]},
                {"id": "a", "name": "Two", "coordinates": [1, 1]},
            ])

    def test_non_list_payload(self):
        with pytest.raises(SourceUnavailable):
            records_to_snapshot({"items": []})

    def test_non_object_records(self):
        with pytest.raises(SourceUnavailable):
            records_to_snapshot(["a", "b"])


class TestSnapshot:
    """Test snapshot helpers."""

    def test_get_by_id(self, entity_snapshot):
        assert entity_snapshot.get("e5").name == "Osaka Castle"
        assert entity_snapshot.get("missing") is None

    def test_points_are_immutable(self, entity_snapshot):
        with pytest.raises(FrozenInstanceError):
            entity_snapshot.points[0].name = "Renamed"  # type: ignore[misc]

    def test_from_points(self, entity_snapshot):
        copy = Snapshot.from_points(entity_snapshot.points[:2], category="entity")
        assert len(copy) == 2
        assert copy.version != entity_snapshot.version

    def test_properties_include_attributes(self, entity_snapshot):
        props = entity_snapshot.points[0].to_properties()
        assert props == {"id": "e1", "name": "Tokyo Station", "logoUrl": "a.png"}


# ==============================================================================
# Adapter Tests
# ==============================================================================

class TestFilePointStore:
    """Test loading from JSON and CSV files."""

    def test_json_file(self, entity_file):
        snapshot = FilePointStore(entity_file).load()
        assert len(snapshot) == 8
        assert snapshot.source == str(entity_file)

    def test_csv_file(self, tmp_path):
        path = tmp_path / "points.csv"
        path.write_text("id,name,latitude,longitude\n1,LakeA,46.5,8.1\n2,LakeB,46.6,8.2\n")

        snapshot = FilePointStore(path).load()
        assert [p.name for p in snapshot] == ["LakeA", "LakeB"]
        assert snapshot.points[1].lat == pytest.approx(46.6)

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceUnavailable):
            FilePointStore(tmp_path / "absent.json").load()

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("[{not json")
        with pytest.raises(SourceUnavailable):
            FilePointStore(path).load()

    def test_each_load_is_a_new_snapshot(self, entity_file):
        store = FilePointStore(entity_file)
        assert store.load().version < store.load().version


class TestHttpPointStore:
    """Test the HTTP adapter against a mocked transport."""

    def test_fetches_records(self, sample_entities):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/entities"
            return httpx.Response(200, json=sample_entities)

        store = HttpPointStore(
            "http://store.test/api/entities",
            transport=httpx.MockTransport(handler),
        )
        snapshot = store.load()
        assert len(snapshot) == len(sample_entities)
        assert snapshot.source == "http://store.test/api/entities"

    def test_server_error(self):
        store = HttpPointStore(
            "http://store.test/api/entities",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with pytest.raises(SourceUnavailable):
            store.load()

    def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        store = HttpPointStore("http://store.test/", transport=httpx.MockTransport(handler))
        with pytest.raises(SourceUnavailable):
            store.load()

    def test_invalid_json(self):
        store = HttpPointStore(
            "http://store.test/",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")),
        )
        with pytest.raises(SourceUnavailable):
            store.load()

    def test_bad_records_are_schema_errors(self):
        payload = json.loads('[{"id": "a", "name": "x", "latitude": 95, "longitude": 0}]')
        store = HttpPointStore(
            "http://store.test/",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload)),
        )
        with pytest.raises(SchemaError):
            store.load()


class TestStoreFromConfig:
    def test_url_selects_http(self):
        store = store_from_config(SourceConfig(location="https://store.test/points"))
        assert isinstance(store, HttpPointStore)

    def test_path_selects_file(self, entity_file):
        store = store_from_config(SourceConfig(location=str(entity_file), category="entity"))
        assert isinstance(store, FilePointStore)
        assert store.load().category == "entity"


def test_snapshot_from_points_accepts_generators(sample_entities):
    snapshot = snapshot_from_points(r for r in sample_entities)
    assert len(snapshot) == len(sample_entities)
