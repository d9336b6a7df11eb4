"""SQLite backed document store used by SheetDash.

Documents are JSON payloads addressed by a slash separated collection path
(``connections/<id>/databases``) and a document id.  The store knows nothing
about the records it keeps; :mod:`sheetdash.repository` layers the
connection → database → table → header hierarchy on top of it.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from sheetdash import app_paths

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Database path handling
# ---------------------------------------------------------------------------
_DEFAULT_DB_PATH = Path(
    os.environ.get("SHEETDASH_DB_PATH", str(app_paths.data_path("sheetdash.db")))
).resolve()
_DB_PATH = _DEFAULT_DB_PATH
DB_PATH = _DB_PATH

_SCHEMA_LOCK = threading.Lock()
_SCHEMA_READY = False

TIMESTAMP_FIELDS = frozenset({"lastUpdated", "createdAt", "lastTested"})
TIMESTAMP_MARKER = "__timestamp__"

CONNECTIONS_COLLECTION = "connections"
SYNCED_ROWS_COLLECTION = "spreadsheet_data"


class DocumentStoreError(RuntimeError):
    """Raised when the document store cannot complete an operation."""


# ---------------------------------------------------------------------------
# Collection paths
# ---------------------------------------------------------------------------

def databases_path(connection_id: str) -> str:
    return f"{CONNECTIONS_COLLECTION}/{connection_id}/databases"


def tables_path(connection_id: str, database_id: str) -> str:
    return f"{databases_path(connection_id)}/{database_id}/tables"


def headers_path(connection_id: str, database_id: str, table_id: str) -> str:
    return f"{tables_path(connection_id, database_id)}/{table_id}/headers"


def synced_rows_path(connection_id: str, database_id: str, table_id: str) -> str:
    return f"{SYNCED_ROWS_COLLECTION}/{connection_id}__{database_id}__{table_id}"


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------

def set_database_path(path: Path) -> None:
    """Override the SQLite file used for storage."""

    global _DB_PATH, DB_PATH, _SCHEMA_READY
    _DB_PATH = Path(path).resolve()
    DB_PATH = _DB_PATH
    _SCHEMA_READY = False


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS documents (
            collection TEXT NOT NULL,
            doc_id TEXT NOT NULL,
            payload TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (collection, doc_id)
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")


def _ensure_database() -> None:
    global _SCHEMA_READY
    if _SCHEMA_READY:
        return
    with _SCHEMA_LOCK:
        if _SCHEMA_READY:
            return
        if _DB_PATH.parent:
            _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(_DB_PATH)
        try:
            _ensure_schema(conn)
            conn.commit()
        finally:
            conn.close()
        _SCHEMA_READY = True


def get_connection() -> sqlite3.Connection:
    _ensure_database()
    conn = sqlite3.connect(_DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    try:
        conn = get_connection()
    except sqlite3.Error as exc:
        raise DocumentStoreError(f"Unable to open document store at {_DB_PATH}: {exc}") from exc
    try:
        conn.execute("BEGIN")
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise DocumentStoreError(f"Document store operation failed: {exc}") from exc
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Record normalisation
# ---------------------------------------------------------------------------

def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def sanitize_for_storage(value: Any) -> Any:
    """Return ``value`` with every ``None`` removed from nested dicts and lists."""

    if isinstance(value, Mapping):
        return {
            str(key): sanitize_for_storage(item)
            for key, item in value.items()
            if item is not None
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_for_storage(item) for item in value if item is not None]
    return value


def to_storage(value: Any) -> Any:
    """Replace ``datetime`` values with tagged ISO-8601 strings."""

    if isinstance(value, datetime):
        stamp = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return {TIMESTAMP_MARKER: stamp.astimezone(timezone.utc).isoformat()}
    if isinstance(value, Mapping):
        return {key: to_storage(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_storage(item) for item in value]
    return value


def from_storage(value: Any) -> Any:
    """Inverse of :func:`to_storage`."""

    if isinstance(value, dict):
        if set(value) == {TIMESTAMP_MARKER}:
            try:
                return datetime.fromisoformat(str(value[TIMESTAMP_MARKER]))
            except ValueError:
                return None
        return {key: from_storage(item) for key, item in value.items()}
    if isinstance(value, list):
        return [from_storage(item) for item in value]
    return value


def _without_timestamps(record: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in record.items() if key not in TIMESTAMP_FIELDS}


def has_data_changed(previous: Optional[Mapping[str, Any]], current: Mapping[str, Any]) -> bool:
    """Return whether ``current`` differs from ``previous`` ignoring timestamps."""

    if previous is None:
        return True
    return to_storage(_without_timestamps(previous)) != to_storage(_without_timestamps(current))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _decode(row: sqlite3.Row) -> Dict[str, Any]:
    record = from_storage(json.loads(row["payload"]))
    record.setdefault("id", row["doc_id"])
    return record


def load(collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
    with transaction() as conn:
        row = conn.execute(
            "SELECT doc_id, payload FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
    return _decode(row) if row is not None else None


def load_all(collection: str) -> List[Dict[str, Any]]:
    """Return every document of ``collection`` ordered by id."""

    with transaction() as conn:
        rows = conn.execute(
            "SELECT doc_id, payload FROM documents WHERE collection = ? ORDER BY doc_id",
            (collection,),
        ).fetchall()
    return [_decode(row) for row in rows]


def save(collection: str, doc_id: str, record: Mapping[str, Any]) -> bool:
    """Write ``record`` unless it matches the stored document.

    ``lastUpdated`` is stamped on every real write and ``createdAt`` is kept
    from the existing document.  Returns ``False`` when the write was skipped.
    """

    if not doc_id:
        raise DocumentStoreError(f"Document id is required to save into '{collection}'.")

    clean = sanitize_for_storage(dict(record))
    clean.setdefault("id", doc_id)
    existing = load(collection, doc_id)
    if existing is not None and not has_data_changed(sanitize_for_storage(existing), clean):
        logger.debug("Skipping unchanged document %s/%s", collection, doc_id)
        return False

    now = _utc_now()
    clean["lastUpdated"] = now
    if existing is not None and existing.get("createdAt"):
        clean["createdAt"] = existing["createdAt"]
    else:
        clean.setdefault("createdAt", now)

    payload = json.dumps(to_storage(clean), ensure_ascii=False, sort_keys=True)
    with transaction() as conn:
        conn.execute(
            """
            INSERT INTO documents (collection, doc_id, payload, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection, doc_id) DO UPDATE SET
                payload = excluded.payload,
                updated_at = excluded.updated_at
            """,
            (collection, doc_id, payload, now.isoformat()),
        )
    return True


def delete(collection: str, doc_id: str) -> bool:
    with transaction() as conn:
        cursor = conn.execute(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
    return cursor.rowcount > 0


def delete_where(collection: str, doc_ids: Iterable[str]) -> int:
    ids = list(doc_ids)
    if not ids:
        return 0
    with transaction() as conn:
        conn.executemany(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
            [(collection, doc_id) for doc_id in ids],
        )
    return len(ids)


def delete_tree(path: str) -> int:
    """Delete every document stored at or below the collection ``path``."""

    with transaction() as conn:
        cursor = conn.execute(
            "DELETE FROM documents WHERE collection = ? OR collection LIKE ? ESCAPE '\\'",
            (path, _escape_like(path) + "/%"),
        )
    return cursor.rowcount


def list_collections(prefix: str = "") -> List[str]:
    with transaction() as conn:
        rows = conn.execute(
            "SELECT DISTINCT collection FROM documents WHERE collection LIKE ? ESCAPE '\\' ORDER BY collection",
            (_escape_like(prefix) + "%",),
        ).fetchall()
    return [row["collection"] for row in rows]


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


__all__ = [
    "CONNECTIONS_COLLECTION",
    "DB_PATH",
    "DocumentStoreError",
    "SYNCED_ROWS_COLLECTION",
    "TIMESTAMP_FIELDS",
    "databases_path",
    "delete",
    "delete_tree",
    "delete_where",
    "from_storage",
    "get_connection",
    "has_data_changed",
    "headers_path",
    "list_collections",
    "load",
    "load_all",
    "sanitize_for_storage",
    "save",
    "set_database_path",
    "synced_rows_path",
    "tables_path",
    "to_storage",
]
