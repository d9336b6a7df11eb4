from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict

import httplib2
import pytest
from googleapiclient.errors import HttpError

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetdash.models import Connection
from sheetdash.public_api import PublicApiStrategy, describe_http_error
from sheetdash.sheets_base import SheetsApiResponseError, SheetsConfigurationError, SheetsEmptyResultError


def _http_error(status: int, message: str) -> HttpError:
    content = json.dumps({"error": {"code": status, "message": message}}).encode("utf-8")
    return HttpError(httplib2.Response({"status": status}), content)


class _FailingRequest:
    def __init__(self, error: Exception) -> None:
        self._error = error

    def execute(self):
        raise self._error


class _StaticRequest:
    def __init__(self, payload: Dict[str, Any]) -> None:
        self._payload = payload

    def execute(self):
        return self._payload


class _Values:
    def __init__(self, request) -> None:
        self._request = request

    def get(self, spreadsheetId: str, range: str):  # noqa: N802 - API compatibility
        return self._request


class _Spreadsheets:
    def __init__(self, request) -> None:
        self._request = request

    def get(self, spreadsheetId: str, fields: str = ""):  # noqa: N802 - API compatibility
        return self._request

    def values(self) -> _Values:
        return _Values(self._request)


class _Service:
    def __init__(self, request) -> None:
        self._request = request

    def spreadsheets(self) -> _Spreadsheets:
        return _Spreadsheets(self._request)


CONNECTION = Connection(name="Main", api_key="AIzaValidLookingKey1234567890123")


@pytest.mark.parametrize(
    ("status", "message", "expected"),
    [
        (401, "", "API Key is invalid or expired"),
        (403, "Google Sheets API has not been used in project 1", "Google Sheets API is not enabled"),
        (403, "Quota exceeded for quota metric", "API quota exceeded"),
        (403, "The caller does not have permission", "Permission denied - Check API key permissions."),
        (404, "", "Spreadsheet not found"),
        (429, "", "Rate limit exceeded - Try again later."),
        (500, "", "API Error: 500"),
    ],
)
def test_describe_http_error(status: int, message: str, expected: str) -> None:
    text = describe_http_error(status, message)

    assert text.startswith(expected)
    if message:
        assert text.endswith(f" | {message}")


def test_http_error_is_translated_with_provider_message() -> None:
    error = _http_error(403, "The caller does not have permission")
    strategy = PublicApiStrategy(lambda key: _Service(_FailingRequest(error)))

    with pytest.raises(SheetsApiResponseError) as excinfo:
        strategy.list_sheets("abc123", CONNECTION)

    assert excinfo.value.status == 403
    assert str(excinfo.value) == (
        "Permission denied - Check API key permissions. | The caller does not have permission"
    )


def test_missing_sheet_uses_sheet_specific_message() -> None:
    error = _http_error(404, "Requested entity was not found.")
    strategy = PublicApiStrategy(lambda key: _Service(_FailingRequest(error)))

    with pytest.raises(SheetsApiResponseError) as excinfo:
        strategy.fetch_headers("abc123", "Missing", CONNECTION)

    assert str(excinfo.value).startswith("Spreadsheet or sheet name not found")


def test_access_test_reports_denial_instead_of_raising() -> None:
    error = _http_error(401, "API key not valid.")
    strategy = PublicApiStrategy(lambda key: _Service(_FailingRequest(error)))

    result = strategy.test_access("abc123", CONNECTION)

    assert result.has_access is False
    assert result.error is not None and result.error.startswith("API Key is invalid or expired")


def test_network_errors_are_wrapped() -> None:
    strategy = PublicApiStrategy(lambda key: _Service(_FailingRequest(httplib2.ServerNotFoundError("dns"))))

    with pytest.raises(SheetsApiResponseError, match="Network error"):
        strategy.fetch_data("abc123", "Sheet1", CONNECTION)


def test_headers_stop_at_first_blank_cell() -> None:
    payload = {"values": [[" Name ", "ID", "", "Ignored"]]}
    strategy = PublicApiStrategy(lambda key: _Service(_StaticRequest(payload)))

    assert strategy.fetch_headers("abc123", "Sheet1", CONNECTION) == ["Name", "ID"]


def test_empty_header_row_raises() -> None:
    strategy = PublicApiStrategy(lambda key: _Service(_StaticRequest({"values": []})))

    with pytest.raises(SheetsEmptyResultError):
        strategy.fetch_headers("abc123", "Sheet1", CONNECTION)


def test_services_are_reused_per_api_key() -> None:
    built = []

    def factory(key: str):
        built.append(key)
        return _Service(_StaticRequest({"sheets": [{"properties": {"title": "Sheet1"}}]}))

    strategy = PublicApiStrategy(factory)
    strategy.list_sheets("abc123", CONNECTION)
    strategy.list_sheets("def456", CONNECTION)

    assert built == [CONNECTION.api_key]


def test_missing_api_key_is_a_configuration_error() -> None:
    strategy = PublicApiStrategy(lambda key: pytest.fail("service should not be built"))

    with pytest.raises(SheetsConfigurationError):
        strategy.list_sheets("abc123", Connection(name="Bare"))
