"""Client for the authenticated backend proxy.

The proxy holds no credentials of its own: each request carries the service
account material of the connection being used and the proxy performs the
signed Google Sheets call on our behalf.  All bodies are JSON and every
failure is surfaced as a message string in the ``error`` field.
"""
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, List, Mapping, Optional

from .cache import CACHE_KEYS, PersistentCache, SessionCache, session_cache
from .models import Connection, DataSource, utc_now
from .sheets_base import (
    DEFAULT_HEADER_RANGE,
    AccessResult,
    BackendUnavailableError,
    SheetStrategy,
    SheetsAccessDeniedError,
    SheetsApiResponseError,
    SheetsConfigurationError,
    SheetsEmptyResultError,
    clean_header_row,
)

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_URL = "http://localhost:3001"
HEALTH_CACHE_KEY = "backend_health"
HEALTHY_TTL_MINUTES = 5
UNHEALTHY_TTL_MINUTES = 1
USER_AGENT = "SheetDash"


def connection_payload(connection: Connection) -> Dict[str, str]:
    return {
        "name": connection.name,
        "clientEmail": connection.client_email,
        "privateKey": connection.private_key,
        "projectId": connection.project_id,
    }


class BackendProxyClient:
    """Thin JSON-over-HTTP wrapper around the proxy endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_BACKEND_URL,
        *,
        cache: Optional[SessionCache] = None,
        timeout: Optional[float] = None,
        healthy_ttl_minutes: float = HEALTHY_TTL_MINUTES,
        unhealthy_ttl_minutes: float = UNHEALTHY_TTL_MINUTES,
        persistent: Optional[PersistentCache] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._cache = cache if cache is not None else session_cache
        self._persistent = persistent
        self._timeout = timeout
        self._healthy_ttl = healthy_ttl_minutes
        self._unhealthy_ttl = unhealthy_ttl_minutes

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def is_healthy(self) -> bool:
        """Return whether the proxy answered its health probe recently."""

        cached = self._cache.get(HEALTH_CACHE_KEY)
        if cached is not None:
            return bool(cached)

        try:
            self._request("/health", {})
        except (BackendUnavailableError, SheetsApiResponseError) as exc:
            logger.warning("Backend proxy at %s is unavailable: %s", self._base_url, exc)
            self._cache.set(HEALTH_CACHE_KEY, False, self._unhealthy_ttl)
            self._record_health(False, str(exc))
            return False

        self._cache.set(HEALTH_CACHE_KEY, True, self._healthy_ttl)
        self._record_health(True, None)
        return True

    def last_health(self, max_age_minutes: float = 24 * 60) -> Optional[Dict[str, Any]]:
        """Return the last recorded probe outcome from the persistent cache."""

        if self._persistent is None:
            return None
        record = self._persistent.get(CACHE_KEYS["BACKEND_STATUS"], max_age_minutes)
        return record if isinstance(record, dict) else None

    def _record_health(self, healthy: bool, error: Optional[str]) -> None:
        if self._persistent is None:
            return
        self._persistent.set(
            CACHE_KEYS["BACKEND_STATUS"],
            {"url": self._base_url, "healthy": healthy, "error": error, "checkedAt": utc_now().isoformat()},
        )

    def test_access(self, spreadsheet_id: str, connection: Connection) -> AccessResult:
        payload = self._request(
            "/api/testAccess",
            {"spreadsheetId": spreadsheet_id, "connection": connection_payload(connection)},
            raise_on_error=False,
        )
        has_access = bool(payload.get("hasAccess"))
        return AccessResult(
            has_access=has_access,
            title=payload.get("spreadsheetTitle"),
            error=None if has_access else str(payload.get("error") or "Access denied"),
            source=DataSource.BACKEND,
        )

    def fetch_sheet_names(self, spreadsheet_id: str, connection: Connection) -> List[str]:
        payload = self._request(
            "/api/fetchSheets",
            {"spreadsheetId": spreadsheet_id, "connection": connection_payload(connection)},
        )
        return [str(name) for name in payload.get("sheetNames") or []]

    def fetch_headers(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: str = DEFAULT_HEADER_RANGE,
    ) -> List[str]:
        payload = self._request(
            "/api/fetchHeaders",
            {
                "spreadsheetId": spreadsheet_id,
                "sheetName": sheet_name,
                "range": cell_range,
                "connection": connection_payload(connection),
            },
        )
        return clean_header_row(list(payload.get("headers") or []))

    def fetch_data(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: Optional[str] = None,
    ) -> List[List[str]]:
        body: Dict[str, Any] = {
            "spreadsheetId": spreadsheet_id,
            "sheetName": sheet_name,
            "connection": connection_payload(connection),
        }
        if cell_range:
            body["range"] = cell_range
        payload = self._request("/api/fetchData", body)
        rows = payload.get("data") or []
        return [["" if cell is None else str(cell) for cell in row] for row in rows]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _request(
        self, path: str, body: Mapping[str, Any], *, raise_on_error: bool = True
    ) -> Dict[str, Any]:
        request = urllib.request.Request(
            f"{self._base_url}{path}",
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
            method="POST",
        )
        kwargs: Dict[str, Any] = {}
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout

        try:
            with urllib.request.urlopen(request, **kwargs) as response:  # nosec: B310 - configured proxy URL
                raw = response.read()
        except urllib.error.HTTPError as exc:
            message = _error_from_body(exc.read()) or f"Backend returned HTTP {exc.code}"
            raise SheetsApiResponseError(message, status=exc.code) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise BackendUnavailableError(f"Unable to contact backend at {self._base_url}: {exc}") from exc

        if not raw:
            return {}
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SheetsApiResponseError(f"Unexpected response from backend: {exc}") from exc
        if not isinstance(payload, dict):
            raise SheetsApiResponseError("Unexpected response from backend: expected a JSON object")

        if raise_on_error and (payload.get("success") is False or payload.get("error")):
            raise SheetsApiResponseError(str(payload.get("error") or "Backend request failed"))
        return payload


def _error_from_body(raw: bytes) -> Optional[str]:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return None


class BackendProxyStrategy(SheetStrategy):
    """Read sheets through the proxy using service account credentials."""

    name = "backend proxy"
    source = DataSource.BACKEND

    def __init__(self, client: BackendProxyClient) -> None:
        self._client = client

    def applies_to(self, connection: Connection) -> bool:
        return connection.has_service_account()

    def test_access(self, spreadsheet_id: str, connection: Connection) -> AccessResult:
        self._require_healthy()
        return self._client.test_access(spreadsheet_id, connection)

    def list_sheets(self, spreadsheet_id: str, connection: Connection) -> List[str]:
        self._prepare(spreadsheet_id, connection)
        names = self._client.fetch_sheet_names(spreadsheet_id, connection)
        if not names:
            raise SheetsEmptyResultError("Backend returned no sheet names.")
        return names

    def fetch_headers(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: str = DEFAULT_HEADER_RANGE,
    ) -> List[str]:
        self._prepare(spreadsheet_id, connection)
        headers = self._client.fetch_headers(spreadsheet_id, sheet_name, connection, cell_range)
        if not headers:
            raise SheetsEmptyResultError(f"Backend returned no headers for '{sheet_name}'.")
        return headers

    def fetch_data(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: Optional[str] = None,
    ) -> List[List[str]]:
        self._prepare(spreadsheet_id, connection)
        rows = self._client.fetch_data(spreadsheet_id, sheet_name, connection, cell_range)
        if not rows:
            raise SheetsEmptyResultError(f"Backend returned no data for '{sheet_name}'.")
        return rows

    def _require_healthy(self) -> None:
        if not self._client.is_healthy():
            raise BackendUnavailableError(f"Backend proxy at {self._client.base_url} is not reachable.")

    def _prepare(self, spreadsheet_id: str, connection: Connection) -> None:
        if not connection.has_service_account():
            raise SheetsConfigurationError("Connection has no service account credentials.")
        self._require_healthy()
        access = self._client.test_access(spreadsheet_id, connection)
        if not access.has_access:
            raise SheetsAccessDeniedError(access.error or "Access denied")


__all__ = [
    "BackendProxyClient",
    "BackendProxyStrategy",
    "DEFAULT_BACKEND_URL",
    "HEALTH_CACHE_KEY",
    "connection_payload",
]
