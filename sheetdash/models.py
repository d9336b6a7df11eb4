"""Records describing registered sheets and their column mappings.

The hierarchy is strict: a :class:`Connection` owns :class:`Database`
entries (one per spreadsheet), a database owns :class:`Table` entries (one
per worksheet tab) and a table owns its :class:`HeaderMapping` rows.  Each
record converts to and from the camelCase dictionaries kept in the document
store.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class Region(Enum):
    SAUDI = "saudi"
    EGYPT = "egypt"


class Status(Enum):
    CONNECTED = "connected"
    TESTING = "testing"
    ERROR = "error"
    PENDING = "pending"


class DataType(Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class DataSource(Enum):
    """Where a fetch result came from."""

    BACKEND = "backend"
    PUBLIC_API = "public_api"
    FALLBACK = "fallback"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _coerce_enum(enum_type, value: Any, default):
    try:
        return enum_type(value)
    except ValueError:
        return default


def _text(record: Mapping[str, Any], key: str, default: str = "") -> str:
    value = record.get(key)
    return default if value is None else str(value)


@dataclass
class Connection:
    name: str
    region: Region = Region.SAUDI
    api_key: str = ""
    client_email: str = ""
    private_key: str = ""
    project_id: str = ""
    client_id: str = ""
    id: str = field(default_factory=lambda: new_id("conn"))
    status: Status = Status.PENDING
    last_tested: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    def has_service_account(self) -> bool:
        return all(
            value.strip() for value in (self.client_email, self.private_key, self.project_id)
        )

    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "region": self.region.value,
            "apiKey": self.api_key or None,
            "clientEmail": self.client_email or None,
            "privateKey": self.private_key or None,
            "projectId": self.project_id or None,
            "clientId": self.client_id or None,
            "status": self.status.value,
            "lastTested": self.last_tested,
            "errorMessage": self.error_message,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Connection":
        return cls(
            id=_text(record, "id"),
            name=_text(record, "name"),
            region=_coerce_enum(Region, record.get("region"), Region.SAUDI),
            api_key=_text(record, "apiKey"),
            client_email=_text(record, "clientEmail"),
            private_key=_text(record, "privateKey"),
            project_id=_text(record, "projectId"),
            client_id=_text(record, "clientId"),
            status=_coerce_enum(Status, record.get("status"), Status.PENDING),
            last_tested=_coerce_datetime(record.get("lastTested")),
            error_message=record.get("errorMessage"),
            created_at=_coerce_datetime(record.get("createdAt")),
        )


@dataclass
class Database:
    name: str
    spreadsheet_id: str
    id: str = field(default_factory=lambda: new_id("db"))
    status: Status = Status.PENDING
    available_sheet_names: List[str] = field(default_factory=list)
    last_tested: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "googleSheetId": self.spreadsheet_id,
            "status": self.status.value,
            "availableSheetNames": list(self.available_sheet_names),
            "lastTested": self.last_tested,
            "errorMessage": self.error_message,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Database":
        names = record.get("availableSheetNames") or []
        return cls(
            id=_text(record, "id"),
            name=_text(record, "name"),
            spreadsheet_id=_text(record, "googleSheetId"),
            status=_coerce_enum(Status, record.get("status"), Status.PENDING),
            available_sheet_names=[str(name) for name in names],
            last_tested=_coerce_datetime(record.get("lastTested")),
            error_message=record.get("errorMessage"),
            created_at=_coerce_datetime(record.get("createdAt")),
        )


@dataclass
class Table:
    name: str
    sheet_name: str
    id: str = field(default_factory=lambda: new_id("table"))
    status: Status = Status.PENDING
    total_headers: int = 0
    row_count: int = 0
    last_synced: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sheetName": self.sheet_name,
            "status": self.status.value,
            "totalHeaders": self.total_headers,
            "rowCount": self.row_count,
            "lastSynced": self.last_synced,
            "errorMessage": self.error_message,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Table":
        return cls(
            id=_text(record, "id"),
            name=_text(record, "name"),
            sheet_name=_text(record, "sheetName"),
            status=_coerce_enum(Status, record.get("status"), Status.PENDING),
            total_headers=int(record.get("totalHeaders") or 0),
            row_count=int(record.get("rowCount") or 0),
            last_synced=_coerce_datetime(record.get("lastSynced")),
            error_message=record.get("errorMessage"),
            created_at=_coerce_datetime(record.get("createdAt")),
        )


@dataclass
class HeaderMapping:
    column_index: int
    original_header: str
    variable_name: str
    id: str = field(default_factory=lambda: new_id("header"))
    data_type: DataType = DataType.TEXT
    is_enabled: bool = True
    is_key: bool = False

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "columnIndex": self.column_index,
            "originalHeader": self.original_header,
            "variableName": self.variable_name,
            "dataType": self.data_type.value,
            "isEnabled": self.is_enabled,
            "isKey": self.is_key,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "HeaderMapping":
        return cls(
            id=_text(record, "id"),
            column_index=int(record.get("columnIndex") or 0),
            original_header=_text(record, "originalHeader"),
            variable_name=_text(record, "variableName"),
            data_type=_coerce_enum(DataType, record.get("dataType"), DataType.TEXT),
            is_enabled=bool(record.get("isEnabled", True)),
            is_key=bool(record.get("isKey", False)),
        )


# Keys written next to the row's fields; variable names may also start with "_".
ROW_BOOKKEEPING_KEYS = frozenset(
    {"_connectionId", "_databaseId", "_tableId", "_rowIndex", "_key", "id", "lastUpdated", "createdAt"}
)


@dataclass
class SyncedRow:
    """One spreadsheet row projected through the enabled header mappings."""

    id: str
    fields: Dict[str, str]
    connection_id: str
    database_id: str
    table_id: str
    row_index: int

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = dict(self.fields)
        record.update(
            {
                "_connectionId": self.connection_id,
                "_databaseId": self.database_id,
                "_tableId": self.table_id,
                "_rowIndex": self.row_index,
                "_key": self.id,
            }
        )
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "SyncedRow":
        fields = {
            key: "" if value is None else str(value)
            for key, value in record.items()
            if key not in ROW_BOOKKEEPING_KEYS
        }
        return cls(
            id=_text(record, "_key") or _text(record, "id"),
            fields=fields,
            connection_id=_text(record, "_connectionId"),
            database_id=_text(record, "_databaseId"),
            table_id=_text(record, "_tableId"),
            row_index=int(record.get("_rowIndex") or 0),
        )


__all__ = [
    "Connection",
    "DataSource",
    "DataType",
    "Database",
    "HeaderMapping",
    "ROW_BOOKKEEPING_KEYS",
    "Region",
    "Status",
    "SyncedRow",
    "Table",
    "new_id",
    "utc_now",
]
