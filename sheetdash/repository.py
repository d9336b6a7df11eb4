"""Hierarchical persistence for connections, databases, tables and headers."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import db

from .cache import SessionCache, session_cache
from .models import Connection, Database, HeaderMapping, Region, SyncedRow, Table

logger = logging.getLogger(__name__)

LIST_TTL_MINUTES = 10
HEADERS_TTL_MINUTES = 15


class Repository:
    """Load and save the registration hierarchy through :mod:`db`.

    Reads are cached in a :class:`SessionCache` and every write clears the
    cache entries it could have made stale.
    """

    def __init__(self, cache: Optional[SessionCache] = None) -> None:
        self._cache = cache if cache is not None else session_cache

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------
    def save_connection(self, connection: Connection) -> bool:
        written = db.save(db.CONNECTIONS_COLLECTION, connection.id, connection.to_record())
        self._cache.clear_prefix("connections_")
        return written

    def load_connections(self, region: Optional[Region] = None) -> List[Connection]:
        cache_key = f"connections_{region.value if region else 'all'}"
        records = self._cache.get(cache_key)
        if records is None:
            records = db.load_all(db.CONNECTIONS_COLLECTION)
            if region is not None:
                records = [record for record in records if record.get("region") == region.value]
            self._cache.set(cache_key, records, LIST_TTL_MINUTES)
        return [Connection.from_record(record) for record in records]

    def load_connection(self, connection_id: str) -> Optional[Connection]:
        record = db.load(db.CONNECTIONS_COLLECTION, connection_id)
        return Connection.from_record(record) if record else None

    def delete_connection(self, connection_id: str) -> None:
        for database in self.load_databases(connection_id):
            self.delete_database(connection_id, database.id)
        db.delete_tree(f"{db.CONNECTIONS_COLLECTION}/{connection_id}")
        db.delete(db.CONNECTIONS_COLLECTION, connection_id)
        self._cache.clear_prefix("connections_")
        self._cache.clear(f"databases_{connection_id}")
        logger.info("Deleted connection %s", connection_id)

    # ------------------------------------------------------------------
    # Databases
    # ------------------------------------------------------------------
    def save_database(self, connection_id: str, database: Database) -> bool:
        written = db.save(db.databases_path(connection_id), database.id, database.to_record())
        self._cache.clear(f"databases_{connection_id}")
        return written

    def load_databases(self, connection_id: str) -> List[Database]:
        cache_key = f"databases_{connection_id}"
        records = self._cache.get(cache_key)
        if records is None:
            records = db.load_all(db.databases_path(connection_id))
            self._cache.set(cache_key, records, LIST_TTL_MINUTES)
        return [Database.from_record(record) for record in records]

    def load_database(self, connection_id: str, database_id: str) -> Optional[Database]:
        record = db.load(db.databases_path(connection_id), database_id)
        return Database.from_record(record) if record else None

    def delete_database(self, connection_id: str, database_id: str) -> None:
        for table in self.load_tables(connection_id, database_id):
            self.delete_table(connection_id, database_id, table.id)
        db.delete_tree(f"{db.databases_path(connection_id)}/{database_id}")
        db.delete(db.databases_path(connection_id), database_id)
        self._cache.clear(f"databases_{connection_id}")
        self._cache.clear(f"tables_{connection_id}_{database_id}")

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------
    def save_table(self, connection_id: str, database_id: str, table: Table) -> bool:
        written = db.save(db.tables_path(connection_id, database_id), table.id, table.to_record())
        self._cache.clear(f"tables_{connection_id}_{database_id}")
        return written

    def load_tables(self, connection_id: str, database_id: str) -> List[Table]:
        cache_key = f"tables_{connection_id}_{database_id}"
        records = self._cache.get(cache_key)
        if records is None:
            records = db.load_all(db.tables_path(connection_id, database_id))
            self._cache.set(cache_key, records, LIST_TTL_MINUTES)
        return [Table.from_record(record) for record in records]

    def load_table(self, connection_id: str, database_id: str, table_id: str) -> Optional[Table]:
        record = db.load(db.tables_path(connection_id, database_id), table_id)
        return Table.from_record(record) if record else None

    def delete_table(self, connection_id: str, database_id: str, table_id: str) -> None:
        self.delete_synced_rows(connection_id, database_id, table_id)
        db.delete_tree(f"{db.tables_path(connection_id, database_id)}/{table_id}")
        db.delete(db.tables_path(connection_id, database_id), table_id)
        self._cache.clear(f"tables_{connection_id}_{database_id}")
        self._cache.clear(f"headers_{connection_id}_{database_id}_{table_id}")

    # ------------------------------------------------------------------
    # Headers
    # ------------------------------------------------------------------
    def save_headers(
        self,
        connection_id: str,
        database_id: str,
        table_id: str,
        mappings: Sequence[HeaderMapping],
    ) -> int:
        """Persist ``mappings``; returns how many documents actually changed."""

        path = db.headers_path(connection_id, database_id, table_id)
        written = sum(1 for mapping in mappings if db.save(path, mapping.id, mapping.to_record()))
        self._cache.clear(f"headers_{connection_id}_{database_id}_{table_id}")
        return written

    def load_headers(self, connection_id: str, database_id: str, table_id: str) -> List[HeaderMapping]:
        cache_key = f"headers_{connection_id}_{database_id}_{table_id}"
        records = self._cache.get(cache_key)
        if records is None:
            records = db.load_all(db.headers_path(connection_id, database_id, table_id))
            self._cache.set(cache_key, records, HEADERS_TTL_MINUTES)
        mappings = [HeaderMapping.from_record(record) for record in records]
        mappings.sort(key=lambda mapping: mapping.column_index)
        return mappings

    def delete_header(self, connection_id: str, database_id: str, table_id: str, header_id: str) -> bool:
        deleted = db.delete(db.headers_path(connection_id, database_id, table_id), header_id)
        self._cache.clear(f"headers_{connection_id}_{database_id}_{table_id}")
        return deleted

    # ------------------------------------------------------------------
    # Synced rows
    # ------------------------------------------------------------------
    def save_synced_row(self, row: SyncedRow) -> bool:
        path = db.synced_rows_path(row.connection_id, row.database_id, row.table_id)
        return db.save(path, row.id, row.to_record())

    def save_synced_rows(self, rows: Iterable[SyncedRow]) -> int:
        return sum(1 for row in rows if self.save_synced_row(row))

    def load_synced_rows(self, connection_id: str, database_id: str, table_id: str) -> List[SyncedRow]:
        records = db.load_all(db.synced_rows_path(connection_id, database_id, table_id))
        rows = [SyncedRow.from_record(record) for record in records]
        rows.sort(key=lambda row: row.row_index)
        return rows

    def delete_synced_rows(self, connection_id: str, database_id: str, table_id: str) -> int:
        path = db.synced_rows_path(connection_id, database_id, table_id)
        ids = [str(record["id"]) for record in db.load_all(path)]
        deleted = db.delete_where(path, ids)
        if deleted:
            logger.info("Deleted %s synced rows for table %s", deleted, table_id)
        return deleted

    def data_stats(self, connection_id: str, database_id: str, table_id: str) -> Dict[str, object]:
        """Return the row count and most recent write time of the synced rows."""

        records = db.load_all(db.synced_rows_path(connection_id, database_id, table_id))
        stamps: List[datetime] = [
            record["lastUpdated"] for record in records if isinstance(record.get("lastUpdated"), datetime)
        ]
        return {
            "row_count": len(records),
            "last_sync": max(stamps) if stamps else None,
            "has_data": bool(records),
        }

    def synced_tables(self) -> List[Tuple[str, str, str]]:
        """Return ``(connection_id, database_id, table_id)`` for every table holding synced rows."""

        prefix = f"{db.SYNCED_ROWS_COLLECTION}/"
        found: List[Tuple[str, str, str]] = []
        for collection in db.list_collections(prefix):
            parts = collection[len(prefix):].split("__")
            if len(parts) == 3:
                found.append((parts[0], parts[1], parts[2]))
            else:
                logger.debug("Ignoring unrecognised synced row collection %s", collection)
        return found


__all__ = ["HEADERS_TTL_MINUTES", "LIST_TTL_MINUTES", "Repository"]
