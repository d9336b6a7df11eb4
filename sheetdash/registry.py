"""Registration workflow for connections, spreadsheets, tabs and headers.

Each step probes Google Sheets through :class:`SheetAccessClient` and stores
the outcome, including failures, on the owning record so the operator can
see a status and message instead of a stack trace.  Results that came from
the static fallback catalog leave the record in ``pending`` state.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from . import header_mapper
from .cache import CACHE_KEYS, PersistentCache
from .google_credentials import (
    CredentialsInvalidError,
    check_service_account,
    extract_spreadsheet_id,
    validate_connection,
)
from .models import Connection, Database, DataType, HeaderMapping, Region, Status, Table, utc_now
from .repository import Repository
from .sheets_base import SheetsClientError
from .sheets_client import SheetAccessClient

logger = logging.getLogger(__name__)

# Google's public sample spreadsheet, readable by any valid API key.
REFERENCE_SPREADSHEET_ID = "1BxiMVs0XRA5nFMdKvBdBZjgmUUqptlbs74OgvE2upms"
CONNECTION_REVERIFY_AGE = timedelta(hours=1)
SHEET_METADATA_MAX_AGE = timedelta(hours=24)


class RegistryError(RuntimeError):
    """Raised when a registration step cannot proceed."""


class Registry:
    def __init__(
        self,
        client: SheetAccessClient,
        repository: Repository,
        clock: Callable[[], datetime] = utc_now,
        reference_spreadsheet_id: str = REFERENCE_SPREADSHEET_ID,
        persistent: Optional[PersistentCache] = None,
    ) -> None:
        self._client = client
        self._repository = repository
        self._clock = clock
        self._reference_spreadsheet_id = reference_spreadsheet_id
        self._persistent = persistent

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------
    def register_connection(
        self,
        name: str,
        region: Region,
        *,
        api_key: str = "",
        client_email: str = "",
        private_key: str = "",
        project_id: str = "",
        client_id: str = "",
    ) -> Connection:
        connection = Connection(
            name=name.strip(),
            region=region,
            api_key=api_key.strip(),
            client_email=client_email.strip(),
            private_key=private_key,
            project_id=project_id.strip(),
            client_id=client_id.strip(),
            created_at=self._clock(),
        )
        validate_connection(connection)
        self._repository.save_connection(connection)
        logger.info("Registered connection %s (%s)", connection.name, connection.id)
        return connection

    def test_connection(self, connection: Connection) -> Connection:
        """Check credentials and reachability, recording the outcome."""

        connection.last_tested = self._clock()
        try:
            validate_connection(connection)
            if connection.has_service_account():
                check_service_account(connection)
        except CredentialsInvalidError as exc:
            return self._mark_connection(connection, Status.ERROR, str(exc))

        access = self._client.test_access(self._reference_spreadsheet_id, connection)
        if access.has_access:
            return self._mark_connection(connection, Status.CONNECTED, None)
        return self._mark_connection(connection, Status.ERROR, access.error)

    def should_reverify_connection(self, connection: Connection, now: Optional[datetime] = None) -> bool:
        if connection.status in (Status.ERROR, Status.PENDING) or connection.last_tested is None:
            return True
        return (now or self._clock()) - connection.last_tested > CONNECTION_REVERIFY_AGE

    def _mark_connection(self, connection: Connection, status: Status, message: Optional[str]) -> Connection:
        connection.status = status
        connection.error_message = message
        self._repository.save_connection(connection)
        self._remember(CACHE_KEYS["CONNECTION_STATUS"], connection.id, {"status": status.value, "error": message})
        if connection.last_tested is not None:
            self._remember(CACHE_KEYS["LAST_VERIFIED"], connection.id, connection.last_tested.isoformat())
        if status is Status.ERROR:
            logger.warning("Connection %s failed its test: %s", connection.name, message)
        else:
            logger.info("Connection %s is %s", connection.name, status.value)
        return connection

    def cached_connection_status(self, connection_id: str, max_age_minutes: float = 60) -> Optional[str]:
        """Return the last recorded status of a connection if still fresh."""

        if self._persistent is None:
            return None
        statuses = self._persistent.get(CACHE_KEYS["CONNECTION_STATUS"], max_age_minutes)
        if not isinstance(statuses, dict):
            return None
        entry = statuses.get(connection_id)
        return entry.get("status") if isinstance(entry, dict) else None

    def _remember(self, cache_key: str, item_key: str, value: object) -> None:
        if self._persistent is None:
            return
        current = self._persistent.get(cache_key, max_age_minutes=24 * 60)
        merged = dict(current) if isinstance(current, dict) else {}
        merged[item_key] = value
        self._persistent.set(cache_key, merged)

    # ------------------------------------------------------------------
    # Databases
    # ------------------------------------------------------------------
    def register_database(self, connection: Connection, name: str, spreadsheet: str) -> Database:
        """Register the spreadsheet named by a URL or id under ``connection``."""

        spreadsheet_id = extract_spreadsheet_id(spreadsheet)
        if not spreadsheet_id:
            raise RegistryError(f"'{spreadsheet}' is not a Google Sheets URL or spreadsheet id.")
        if not name.strip():
            raise RegistryError("Database name is required.")

        database = Database(name=name.strip(), spreadsheet_id=spreadsheet_id, created_at=self._clock())
        self._probe_database(connection, database)
        return database

    def should_refresh_sheet_metadata(self, database: Database, now: Optional[datetime] = None) -> bool:
        if not database.available_sheet_names or database.last_tested is None:
            return True
        return (now or self._clock()) - database.last_tested > SHEET_METADATA_MAX_AGE

    def refresh_sheet_names(self, connection: Connection, database: Database, *, force: bool = False) -> Database:
        if not force and not self.should_refresh_sheet_metadata(database):
            logger.debug("Sheet names for %s are fresh", database.name)
            return database
        self._client.invalidate_sheet_names(database.spreadsheet_id)
        self._probe_database(connection, database)
        return database

    def _probe_database(self, connection: Connection, database: Database) -> None:
        database.last_tested = self._clock()
        access = self._client.test_access(database.spreadsheet_id, connection)
        if not access.has_access:
            database.status = Status.ERROR
            database.error_message = access.error
            self._repository.save_database(connection.id, database)
            logger.warning("Spreadsheet %s is not reachable: %s", database.spreadsheet_id, access.error)
            return

        result = self._client.list_sheets(database.spreadsheet_id, connection)
        database.available_sheet_names = list(result.value)
        database.status = Status.PENDING if result.is_fallback else Status.CONNECTED
        database.error_message = (
            "Live sheet list unavailable; showing placeholder sheet names." if result.is_fallback else None
        )
        self._repository.save_database(connection.id, database)
        self._remember(CACHE_KEYS["SHEET_METADATA"], database.spreadsheet_id, database.available_sheet_names)

    # ------------------------------------------------------------------
    # Tables and headers
    # ------------------------------------------------------------------
    def register_table(
        self,
        connection: Connection,
        database: Database,
        sheet_name: str,
        name: Optional[str] = None,
    ) -> Table:
        if sheet_name not in database.available_sheet_names:
            raise RegistryError(
                f"Sheet '{sheet_name}' is not in '{database.name}'. "
                f"Available sheets: {', '.join(database.available_sheet_names) or 'none'}."
            )
        table = Table(name=(name or sheet_name).strip(), sheet_name=sheet_name, created_at=self._clock())
        try:
            result = self._client.fetch_headers(database.spreadsheet_id, sheet_name, connection)
        except SheetsClientError as exc:
            raise RegistryError(str(exc)) from exc

        mappings = header_mapper.generate_mappings(result.value, connection.name, database.name, table.name)
        table.total_headers = len(mappings)
        table.status = Status.PENDING if result.is_fallback else Status.CONNECTED
        if result.is_fallback:
            table.error_message = "Live headers unavailable; placeholder headers were generated."
        self._repository.save_table(connection.id, database.id, table)
        self._repository.save_headers(connection.id, database.id, table.id, mappings)
        logger.info("Registered table %s with %s headers", table.name, len(mappings))
        return table

    def refresh_headers(self, connection: Connection, database: Database, table: Table) -> List[HeaderMapping]:
        """Re-probe the header row and merge it into the stored mappings."""

        try:
            result = self._client.fetch_headers(database.spreadsheet_id, table.sheet_name, connection)
        except SheetsClientError as exc:
            raise RegistryError(str(exc)) from exc

        fresh = header_mapper.generate_mappings(result.value, connection.name, database.name, table.name)
        existing = self._repository.load_headers(connection.id, database.id, table.id)
        merged = header_mapper.merge_mappings(existing, fresh)
        self._repository.save_headers(connection.id, database.id, table.id, merged)

        table.total_headers = len(merged)
        if not result.is_fallback and table.status is Status.PENDING:
            table.status = Status.CONNECTED
            table.error_message = None
        self._repository.save_table(connection.id, database.id, table)
        return merged

    def set_key_header(self, connection: Connection, database: Database, table: Table, header_id: str) -> HeaderMapping:
        mappings = self._repository.load_headers(connection.id, database.id, table.id)
        chosen = header_mapper.set_key(mappings, header_id)
        self._repository.save_headers(connection.id, database.id, table.id, mappings)
        return chosen

    def set_header_enabled(
        self,
        connection: Connection,
        database: Database,
        table: Table,
        header_id: str,
        enabled: bool,
    ) -> HeaderMapping:
        mappings = self._repository.load_headers(connection.id, database.id, table.id)
        mapping = header_mapper.set_enabled(mappings, header_id, enabled)
        self._repository.save_headers(connection.id, database.id, table.id, [mapping])
        return mapping

    def set_header_type(
        self,
        connection: Connection,
        database: Database,
        table: Table,
        header_id: str,
        data_type: DataType,
    ) -> HeaderMapping:
        mappings = self._repository.load_headers(connection.id, database.id, table.id)
        mapping = header_mapper.set_data_type(mappings, header_id, data_type)
        self._repository.save_headers(connection.id, database.id, table.id, [mapping])
        return mapping

    def rename_header(
        self,
        connection: Connection,
        database: Database,
        table: Table,
        header_id: str,
        new_header: str,
    ) -> HeaderMapping:
        """Change a header's text; its variable name is regenerated."""

        mappings = self._repository.load_headers(connection.id, database.id, table.id)
        mapping = header_mapper.rename_header(
            mappings, header_id, new_header, connection.name, database.name, table.name
        )
        self._repository.save_headers(connection.id, database.id, table.id, [mapping])
        return mapping

    def add_header(
        self,
        connection: Connection,
        database: Database,
        table: Table,
        header: Optional[str] = None,
    ) -> HeaderMapping:
        mappings = self._repository.load_headers(connection.id, database.id, table.id)
        mapping = header_mapper.add_mapping(mappings, connection.name, database.name, table.name, header)
        self._repository.save_headers(connection.id, database.id, table.id, [mapping])
        self._update_header_count(connection, database, table, len(mappings))
        return mapping

    def remove_header(self, connection: Connection, database: Database, table: Table, header_id: str) -> HeaderMapping:
        mappings = self._repository.load_headers(connection.id, database.id, table.id)
        mapping = header_mapper.remove_mapping(mappings, header_id)
        self._repository.delete_header(connection.id, database.id, table.id, mapping.id)
        self._update_header_count(connection, database, table, len(mappings))
        if mapping.is_key:
            logger.warning(
                "Removed key header %s from table %s; choose a new key before syncing", mapping.id, table.name
            )
        return mapping

    def _update_header_count(self, connection: Connection, database: Database, table: Table, count: int) -> None:
        table.total_headers = count
        self._repository.save_table(connection.id, database.id, table)


__all__ = [
    "CONNECTION_REVERIFY_AGE",
    "REFERENCE_SPREADSHEET_ID",
    "Registry",
    "RegistryError",
    "SHEET_METADATA_MAX_AGE",
]
