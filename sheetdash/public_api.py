"""Read-only access to the Google Sheets REST API using a bare API key."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .models import Connection, DataSource
from .sheets_base import (
    DEFAULT_HEADER_RANGE,
    AccessResult,
    SheetStrategy,
    SheetsApiResponseError,
    SheetsConfigurationError,
    SheetsEmptyResultError,
    a1_range,
    clean_header_row,
)

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[str], Any]


def build_service(api_key: str) -> Any:
    """Return a Sheets v4 resource authenticated with ``api_key``."""

    return build("sheets", "v4", developerKey=api_key, cache_discovery=False)


def _http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None)
    if status is not None:
        try:
            return int(status)
        except (TypeError, ValueError):
            return 0
    resp = getattr(exc, "resp", None)
    if resp is not None:
        try:
            return int(getattr(resp, "status", 0))
        except (TypeError, ValueError):
            return 0
    return 0


def _provider_message(exc: HttpError) -> str:
    content = getattr(exc, "content", b"") or b""
    try:
        payload = json.loads(content.decode("utf-8") if isinstance(content, bytes) else content)
    except (UnicodeDecodeError, json.JSONDecodeError, AttributeError):
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    reason = getattr(exc, "reason", None)
    return str(reason) if reason else ""


def describe_http_error(status: int, message: str = "", *, not_found: str = "Spreadsheet not found") -> str:
    """Return operator guidance for an HTTP ``status`` from the Sheets API."""

    lowered = message.lower()
    if status == 401:
        text = "API Key is invalid or expired"
    elif status == 403:
        if "api has not been used" in lowered or "is disabled" in lowered:
            text = "Google Sheets API is not enabled for this project. Enable it in Google Cloud Console."
        elif "quota" in lowered:
            text = "API quota exceeded. Check your usage limits."
        else:
            text = "Permission denied - Check API key permissions."
    elif status == 404:
        text = not_found
    elif status == 429:
        text = "Rate limit exceeded - Try again later."
    else:
        text = f"API Error: {status}"
    if message:
        text = f"{text} | {message}"
    return text


class PublicApiStrategy(SheetStrategy):
    """Read public or shared spreadsheets with an API key."""

    name = "public API"
    source = DataSource.PUBLIC_API

    def __init__(self, service_factory: ServiceFactory = build_service) -> None:
        self._service_factory = service_factory
        self._services: Dict[str, Any] = {}

    def applies_to(self, connection: Connection) -> bool:
        return connection.has_api_key()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def test_access(self, spreadsheet_id: str, connection: Connection) -> AccessResult:
        try:
            payload = self._execute(
                lambda service: service.spreadsheets().get(
                    spreadsheetId=spreadsheet_id, fields="properties.title"
                ),
                connection,
            )
        except SheetsApiResponseError as exc:
            return AccessResult(has_access=False, error=str(exc), source=self.source)
        title = (payload.get("properties") or {}).get("title")
        return AccessResult(has_access=True, title=title, source=self.source)

    def list_sheets(self, spreadsheet_id: str, connection: Connection) -> List[str]:
        payload = self._execute(
            lambda service: service.spreadsheets().get(
                spreadsheetId=spreadsheet_id, fields="sheets.properties.title"
            ),
            connection,
        )
        names = [
            str((sheet.get("properties") or {}).get("title"))
            for sheet in payload.get("sheets") or []
            if (sheet.get("properties") or {}).get("title")
        ]
        if not names:
            raise SheetsEmptyResultError("Public API returned no sheet names.")
        return names

    def fetch_headers(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: str = DEFAULT_HEADER_RANGE,
    ) -> List[str]:
        payload = self._execute(
            lambda service: service.spreadsheets()
            .values()
            .get(spreadsheetId=spreadsheet_id, range=a1_range(sheet_name, cell_range)),
            connection,
            not_found="Spreadsheet or sheet name not found",
        )
        values = payload.get("values") or []
        headers = clean_header_row(list(values[0])) if values else []
        if not headers:
            raise SheetsEmptyResultError(f"No headers found in '{sheet_name}'.")
        return headers

    def fetch_data(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: Optional[str] = None,
    ) -> List[List[str]]:
        payload = self._execute(
            lambda service: service.spreadsheets()
            .values()
            .get(spreadsheetId=spreadsheet_id, range=a1_range(sheet_name, cell_range)),
            connection,
            not_found="Spreadsheet or sheet name not found",
        )
        rows = payload.get("values") or []
        if not rows:
            raise SheetsEmptyResultError(f"No data found in '{sheet_name}'.")
        return [["" if cell is None else str(cell) for cell in row] for row in rows]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _service(self, connection: Connection) -> Any:
        api_key = connection.api_key.strip()
        if not api_key:
            raise SheetsConfigurationError("Connection has no API key.")
        service = self._services.get(api_key)
        if service is None:
            service = self._service_factory(api_key)
            self._services[api_key] = service
        return service

    def _execute(
        self,
        make_request: Callable[[Any], Any],
        connection: Connection,
        *,
        not_found: str = "Spreadsheet not found",
    ) -> Dict[str, Any]:
        service = self._service(connection)
        try:
            payload = make_request(service).execute()
        except HttpError as exc:
            status = _http_status(exc)
            raise SheetsApiResponseError(
                describe_http_error(status, _provider_message(exc), not_found=not_found),
                status=status,
            ) from exc
        except (OSError, httplib2.HttpLib2Error) as exc:
            raise SheetsApiResponseError(f"Network error contacting Google Sheets: {exc}") from exc
        return payload if isinstance(payload, dict) else {}


__all__ = [
    "PublicApiStrategy",
    "build_service",
    "describe_http_error",
]
