"""Full-replace synchronisation of a registered table into the document store."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import db

from .header_mapper import SyncPreconditionError, clean, enabled_mappings, validate_for_sync
from .models import Connection, Database, DataSource, HeaderMapping, Status, SyncedRow, Table, utc_now
from .repository import Repository
from .sheets_base import SheetsClientError
from .sheets_client import SheetAccessClient

logger = logging.getLogger(__name__)


class SyncState(Enum):
    IDLE = "idle"
    TESTING_ACCESS = "testing-access"
    FETCHING_DATA = "fetching-data"
    CLEARING_OLD = "clearing-old"
    WRITING_NEW = "writing-new"


class SyncServiceError(Exception):
    """Raised when a sync step fails; the message is shown to the operator."""


@dataclass
class SyncReport:
    table_id: str
    success: bool = False
    state: SyncState = SyncState.IDLE
    failed_step: Optional[SyncState] = None
    rows_fetched: int = 0
    rows_written: int = 0
    rows_skipped: int = 0
    rows_deleted: int = 0
    duplicates: int = 0
    skipped_rows: List[int] = field(default_factory=list)
    source: Optional[DataSource] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


def build_rows(
    data_rows: Sequence[Sequence[str]],
    mappings: Sequence[HeaderMapping],
    key: HeaderMapping,
    connection_id: str,
    database_id: str,
    table_id: str,
) -> tuple[Dict[str, SyncedRow], List[int], int]:
    """Project ``data_rows`` through the enabled mappings.

    Returns the documents keyed by id, the 1-based sheet row numbers that were
    skipped for lacking a usable key, and the number of duplicate keys.  When
    a key repeats the later row replaces the earlier one.
    """

    enabled = enabled_mappings(mappings)
    documents: Dict[str, SyncedRow] = {}
    skipped: List[int] = []
    duplicates = 0
    for offset, row in enumerate(data_rows):
        sheet_row = offset + 2
        raw_key = row[key.column_index] if key.column_index < len(row) else ""
        doc_id = clean(str(raw_key).strip())
        if not doc_id.strip("_"):
            skipped.append(sheet_row)
            continue
        if doc_id in documents:
            duplicates += 1
        documents[doc_id] = SyncedRow(
            id=doc_id,
            fields={
                mapping.variable_name: (
                    str(row[mapping.column_index]) if mapping.column_index < len(row) else ""
                )
                for mapping in enabled
            },
            connection_id=connection_id,
            database_id=database_id,
            table_id=table_id,
            row_index=sheet_row,
        )
    return documents, skipped, duplicates


class SyncOrchestrator:
    """Run the access test → fetch → clear → write sequence for a table."""

    def __init__(
        self,
        client: SheetAccessClient,
        repository: Repository,
        log_callback: Optional[Callable[[str], None]] = None,
        state_callback: Optional[Callable[[SyncState], None]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._repository = repository
        self._log_callback = log_callback
        self._state_callback = state_callback
        self._clock = clock

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def sync_table(self, connection: Connection, database: Database, table: Table) -> SyncReport:
        report = SyncReport(table_id=table.id, started_at=self._clock())

        mappings = self._repository.load_headers(connection.id, database.id, table.id)
        try:
            key = validate_for_sync(mappings)
        except SyncPreconditionError as exc:
            report.error = str(exc)
            report.finished_at = self._clock()
            self._log(f"Sync of '{table.name}' refused: {exc}")
            logger.warning("Sync of table %s refused: %s", table.id, exc)
            return report

        try:
            self._enter(report, SyncState.TESTING_ACCESS)
            access = self._client.test_access(database.spreadsheet_id, connection)
            if not access.has_access:
                raise SyncServiceError(access.error or "Access denied")

            self._enter(report, SyncState.FETCHING_DATA)
            result = self._client.fetch_data(database.spreadsheet_id, table.sheet_name, connection)
            report.source = result.source
            data_rows = list(result.value)[1:]
            report.rows_fetched = len(data_rows)
            if not data_rows:
                raise SyncServiceError(
                    f"No data rows found in '{table.sheet_name}'. Existing synced data was kept."
                )
            documents, skipped, duplicates = build_rows(
                data_rows, mappings, key, connection.id, database.id, table.id
            )
            report.skipped_rows = skipped
            report.rows_skipped = len(skipped)
            report.duplicates = duplicates
            if not documents:
                raise SyncServiceError(
                    f"None of the {len(data_rows)} rows in '{table.sheet_name}' has a usable key value."
                    " Existing synced data was kept."
                )

            self._enter(report, SyncState.CLEARING_OLD)
            report.rows_deleted = self._repository.delete_synced_rows(connection.id, database.id, table.id)

            self._enter(report, SyncState.WRITING_NEW)
            report.rows_written = self._repository.save_synced_rows(documents.values())

            table.status = Status.CONNECTED
            table.row_count = report.rows_written
            table.last_synced = self._clock()
            table.error_message = None
            self._repository.save_table(connection.id, database.id, table)
        except (SyncServiceError, SheetsClientError, db.DocumentStoreError) as exc:
            return self._fail(report, table, connection, database, str(exc))

        report.success = True
        report.finished_at = table.last_synced
        self._enter(report, SyncState.IDLE)
        summary = (
            f"Synced {report.rows_written} rows into '{table.name}'"
            f" ({report.rows_skipped} skipped, {report.duplicates} duplicate keys)"
        )
        self._log(summary)
        logger.info("%s from %s", summary, report.source.value if report.source else "unknown source")
        return report

    def data_stats(self, connection: Connection, database: Database, table: Table) -> Dict[str, object]:
        return self._repository.data_stats(connection.id, database.id, table.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _enter(self, report: SyncReport, state: SyncState) -> None:
        report.state = state
        logger.debug("Sync of table %s entered %s", report.table_id, state.value)
        if self._state_callback is not None:
            self._state_callback(state)

    def _fail(
        self,
        report: SyncReport,
        table: Table,
        connection: Connection,
        database: Database,
        message: str,
    ) -> SyncReport:
        report.failed_step = report.state
        report.error = message
        report.finished_at = self._clock()
        logger.error("Sync of table %s failed during %s: %s", table.id, report.state.value, message)
        self._log(f"Sync of '{table.name}' failed: {message}")

        table.status = Status.ERROR
        table.error_message = message
        try:
            self._repository.save_table(connection.id, database.id, table)
        except db.DocumentStoreError as exc:
            logger.error("Unable to record sync failure for table %s: %s", table.id, exc)
        self._enter(report, SyncState.IDLE)
        return report

    def _log(self, message: str) -> None:
        if self._log_callback is not None:
            self._log_callback(message)


__all__ = ["SyncOrchestrator", "SyncReport", "SyncServiceError", "SyncState", "build_rows"]
