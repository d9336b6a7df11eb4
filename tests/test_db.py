from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import db


def test_sanitize_for_storage_strips_none_recursively() -> None:
    record = {
        "name": "Main",
        "error": None,
        "nested": {"keep": 1, "drop": None, "deeper": {"x": None, "y": "z"}},
        "items": [1, None, {"a": None, "b": 2}],
    }

    assert db.sanitize_for_storage(record) == {
        "name": "Main",
        "nested": {"keep": 1, "deeper": {"y": "z"}},
        "items": [1, {"b": 2}],
    }
    assert record["error"] is None


def test_timestamps_round_trip() -> None:
    stamp = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)
    stored = db.to_storage({"lastTested": stamp, "list": [stamp]})

    assert stored["lastTested"] == {"__timestamp__": "2024-03-01T12:30:00+00:00"}
    assert db.from_storage(stored) == {"lastTested": stamp, "list": [stamp]}


def test_naive_datetimes_are_treated_as_utc() -> None:
    naive = datetime(2024, 3, 1, 12, 30)

    restored = db.from_storage(db.to_storage(naive))

    assert restored == naive.replace(tzinfo=timezone.utc)


def test_has_data_changed_ignores_timestamp_fields() -> None:
    previous = {"name": "a", "lastUpdated": datetime(2020, 1, 1), "createdAt": datetime(2020, 1, 1)}
    current = {"name": "a", "lastUpdated": datetime(2024, 1, 1), "lastTested": datetime(2024, 1, 1)}

    assert db.has_data_changed(previous, current) is False
    assert db.has_data_changed(previous, {"name": "b"}) is True
    assert db.has_data_changed(None, current) is True


def test_save_load_and_skip_unchanged(store: Path) -> None:
    assert db.save("connections", "c1", {"id": "c1", "name": "Main", "errorMessage": None}) is True
    first = db.load("connections", "c1")

    assert first["name"] == "Main"
    assert "errorMessage" not in first
    assert isinstance(first["createdAt"], datetime)

    assert db.save("connections", "c1", {"id": "c1", "name": "Main"}) is False
    assert db.save("connections", "c1", {"id": "c1", "name": "Renamed"}) is True

    second = db.load("connections", "c1")
    assert second["name"] == "Renamed"
    assert second["createdAt"] == first["createdAt"]


def test_load_all_orders_by_id_and_delete(store: Path) -> None:
    for doc_id in ("b", "a", "c"):
        db.save("items", doc_id, {"value": doc_id})

    assert [record["id"] for record in db.load_all("items")] == ["a", "b", "c"]
    assert db.delete("items", "b") is True
    assert db.delete("items", "b") is False
    assert [record["id"] for record in db.load_all("items")] == ["a", "c"]


def test_delete_tree_removes_nested_collections_only(store: Path) -> None:
    db.save(db.databases_path("c1"), "d1", {"name": "db"})
    db.save(db.tables_path("c1", "d1"), "t1", {"name": "table"})
    db.save(db.headers_path("c1", "d1", "t1"), "h1", {"name": "header"})
    db.save(db.databases_path("c10"), "d2", {"name": "other"})

    removed = db.delete_tree("connections/c1")

    assert removed == 3
    assert db.list_collections("connections/") == ["connections/c10/databases"]


def test_save_requires_document_id(store: Path) -> None:
    with pytest.raises(db.DocumentStoreError):
        db.save("connections", "", {"name": "x"})
