"""Shared types for the sheet access strategies.

Every strategy that can read a spreadsheet (the authenticated backend proxy,
the public API key client and the static fallback) speaks the same small
protocol defined by :class:`SheetStrategy`.  Failures are always raised as
subclasses of :class:`SheetsClientError` so the driver in
:mod:`sheetdash.sheets_client` can log them and move on to the next
strategy without inspecting transport specific exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .models import Connection, DataSource

DEFAULT_HEADER_RANGE = "A1:ZZ1"


class SheetsClientError(RuntimeError):
    """Base error raised for sheet access failures."""


class SheetsConfigurationError(SheetsClientError):
    """Raised when a request is missing required input."""


class BackendUnavailableError(SheetsClientError):
    """Raised when the backend proxy cannot be reached."""


class SheetsApiResponseError(SheetsClientError):
    """Raised when a source answers with an error response."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class SheetsAccessDeniedError(SheetsClientError):
    """Raised when an access test reports that the sheet cannot be read."""


class SheetsEmptyResultError(SheetsClientError):
    """Raised when a source answers successfully but returns nothing."""


class SheetsFetchError(SheetsClientError):
    """Raised when every strategy failed to produce data."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


@dataclass(slots=True)
class AccessResult:
    """Outcome of an access test against a spreadsheet."""

    has_access: bool
    title: Optional[str] = None
    error: Optional[str] = None
    source: Optional[DataSource] = None


def normalise_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if not safe:
        raise SheetsConfigurationError("Sheet name is required.")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def a1_range(title: str, cell_range: Optional[str] = None) -> str:
    """Return ``'title'!range`` or just the quoted title when no range is given."""

    quoted = normalise_title(title)
    if not cell_range:
        return quoted
    return f"{quoted}!{cell_range}"


def clean_header_row(cells: List[object]) -> List[str]:
    """Return header text up to the first blank cell.

    Cells are stripped of surrounding whitespace.  A blank cell ends the
    header row, which also removes any trailing empties reported by the
    source.
    """

    headers: List[str] = []
    for cell in cells:
        text = "" if cell is None else str(cell).strip()
        if not text:
            break
        headers.append(text)
    return headers


class SheetStrategy:
    """One way of reading a spreadsheet.

    Subclasses override the four operations.  Each must either return a
    value or raise :class:`SheetsClientError`.
    """

    name: str = "strategy"
    source: DataSource = DataSource.FALLBACK
    live: bool = True

    def applies_to(self, connection: Connection) -> bool:
        raise NotImplementedError

    def test_access(self, spreadsheet_id: str, connection: Connection) -> AccessResult:
        raise NotImplementedError

    def list_sheets(self, spreadsheet_id: str, connection: Connection) -> List[str]:
        raise NotImplementedError

    def fetch_headers(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: str = DEFAULT_HEADER_RANGE,
    ) -> List[str]:
        raise NotImplementedError

    def fetch_data(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: Optional[str] = None,
    ) -> List[List[str]]:
        raise NotImplementedError


__all__ = [
    "AccessResult",
    "BackendUnavailableError",
    "DEFAULT_HEADER_RANGE",
    "SheetStrategy",
    "SheetsAccessDeniedError",
    "SheetsApiResponseError",
    "SheetsClientError",
    "SheetsConfigurationError",
    "SheetsEmptyResultError",
    "SheetsFetchError",
    "a1_range",
    "clean_header_row",
    "normalise_title",
]
