from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import db
from sheetdash.cache import SessionCache
from sheetdash.models import Connection, Database, HeaderMapping, Region, Status, SyncedRow, Table
from sheetdash.repository import Repository


def _tree(repository: Repository) -> tuple[Connection, Database, Table]:
    connection = Connection(name="Main", region=Region.SAUDI, id="c1")
    database = Database(name="Sales", spreadsheet_id="sheet", id="d1", available_sheet_names=["Sheet1"])
    table = Table(name="Bookings", sheet_name="Sheet1", id="t1")
    repository.save_connection(connection)
    repository.save_database(connection.id, database)
    repository.save_table(connection.id, database.id, table)
    repository.save_headers(
        connection.id,
        database.id,
        table.id,
        [
            HeaderMapping(column_index=1, original_header="ID", variable_name="id", id="h1", is_key=True),
            HeaderMapping(column_index=0, original_header="Name", variable_name="name", id="h0"),
        ],
    )
    repository.save_synced_rows(
        [
            SyncedRow(id="1", fields={"name": "Alice"}, connection_id="c1", database_id="d1", table_id="t1", row_index=2),
            SyncedRow(id="2", fields={"name": "Bob"}, connection_id="c1", database_id="d1", table_id="t1", row_index=3),
        ]
    )
    return connection, database, table


def test_records_round_trip(repository: Repository) -> None:
    _tree(repository)

    database = repository.load_database("c1", "d1")
    assert database.available_sheet_names == ["Sheet1"]
    headers = repository.load_headers("c1", "d1", "t1")
    assert [header.original_header for header in headers] == ["Name", "ID"]
    assert headers[1].is_key is True
    rows = repository.load_synced_rows("c1", "d1", "t1")
    assert [(row.id, row.fields) for row in rows] == [("1", {"name": "Alice"}), ("2", {"name": "Bob"})]


def test_load_connections_filters_by_region(repository: Repository) -> None:
    repository.save_connection(Connection(name="Riyadh", region=Region.SAUDI, id="c1"))
    repository.save_connection(Connection(name="Cairo", region=Region.EGYPT, id="c2"))

    assert [c.name for c in repository.load_connections(Region.EGYPT)] == ["Cairo"]
    assert [c.name for c in repository.load_connections()] == ["Riyadh", "Cairo"]


def test_writes_invalidate_cached_lists(repository: Repository, session: SessionCache) -> None:
    connection, database, table = _tree(repository)
    assert repository.load_tables("c1", "d1")[0].status is Status.PENDING

    table.status = Status.CONNECTED
    repository.save_table(connection.id, database.id, table)

    assert repository.load_tables("c1", "d1")[0].status is Status.CONNECTED


def test_save_headers_counts_changed_documents(repository: Repository) -> None:
    _tree(repository)
    headers = repository.load_headers("c1", "d1", "t1")

    assert repository.save_headers("c1", "d1", "t1", headers) == 0
    headers[0].is_enabled = False
    assert repository.save_headers("c1", "d1", "t1", headers) == 1


def test_delete_connection_cascades(repository: Repository) -> None:
    _tree(repository)

    repository.delete_connection("c1")

    assert repository.load_connections() == []
    assert repository.load_databases("c1") == []
    assert repository.load_tables("c1", "d1") == []
    assert repository.load_headers("c1", "d1", "t1") == []
    assert repository.load_synced_rows("c1", "d1", "t1") == []
    assert db.list_collections("") == []


def test_data_stats(repository: Repository) -> None:
    _tree(repository)

    stats = repository.data_stats("c1", "d1", "t1")

    assert stats["row_count"] == 2
    assert stats["has_data"] is True
    assert stats["last_sync"] is not None
    assert repository.delete_synced_rows("c1", "d1", "t1") == 2
    assert repository.data_stats("c1", "d1", "t1") == {"row_count": 0, "last_sync": None, "has_data": False}


def test_fields_with_leading_underscore_survive_reload(repository: Repository) -> None:
    _tree(repository)
    row = SyncedRow(
        id="7",
        fields={"_main_saudi_sales_bookings_name": "Alice", "_main_saudi_sales_bookings_id": "7"},
        connection_id="c1",
        database_id="d1",
        table_id="t1",
        row_index=4,
    )

    repository.save_synced_row(row)

    loaded = {item.id: item for item in repository.load_synced_rows("c1", "d1", "t1")}
    assert loaded["7"].fields == row.fields
    assert loaded["7"].row_index == 4


def test_synced_tables_lists_tables_holding_rows(repository: Repository) -> None:
    _tree(repository)
    repository.save_synced_row(
        SyncedRow(id="9", fields={"name": "Zed"}, connection_id="c1", database_id="d2", table_id="t5", row_index=2)
    )

    assert repository.synced_tables() == [("c1", "d1", "t1"), ("c1", "d2", "t5")]

    repository.delete_synced_rows("c1", "d1", "t1")
    assert repository.synced_tables() == [("c1", "d2", "t5")]
