from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Dict, List

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import sync_cli
from sheetdash import cache
from sheetdash.cache import CACHE_KEYS, PersistentCache
from sheetdash.models import Connection, DataSource
from sheetdash.sheets_base import AccessResult, SheetStrategy
from sheetdash.sheets_client import SheetAccessClient, StaticFallbackStrategy

API_KEY = "AIzaValidLookingKey1234567890123"
SHEET_ID = "1AbCdEfGhIjKlMnOpQrStUvWxYz0123456789"


class _Workbook(SheetStrategy):
    name = "workbook"
    source = DataSource.PUBLIC_API

    def __init__(self, sheets: Dict[str, List[List[str]]]) -> None:
        self.sheets = sheets

    def applies_to(self, connection: Connection) -> bool:
        return connection.has_api_key()

    def test_access(self, spreadsheet_id: str, connection: Connection) -> AccessResult:
        return AccessResult(has_access=True, title="Sales", source=self.source)

    def list_sheets(self, spreadsheet_id: str, connection: Connection) -> List[str]:
        return list(self.sheets)

    def fetch_headers(self, spreadsheet_id, sheet_name, connection, cell_range="A1:ZZ1"):
        return list(self.sheets[sheet_name][0])

    def fetch_data(self, spreadsheet_id, sheet_name, connection, cell_range=None):
        return [list(row) for row in self.sheets[sheet_name]]


@pytest.fixture
def cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    workbook = _Workbook(
        {
            "Bookings": [
                ["Client Name", "Booking ID", "Total Book", "Location"],
                ["Alice", "B-1", "1,000", "Riyadh"],
                ["Bob", "B-2", "500", "Jeddah"],
                ["Nobody", "", "50", "Riyadh"],
            ],
            "Users": [
                ["Name", "Role", "Cards"],
                ["Alice", "admin", ""],
                ["Bob", "sales officer", ""],
                ["Cara", "viewer", "RevenueChart, StatsOverview"],
            ],
        }
    )
    monkeypatch.setattr(
        sync_cli,
        "build_client",
        lambda config, persistent=None: SheetAccessClient(
            [workbook, StaticFallbackStrategy()], cache=cache.session_cache
        ),
    )
    monkeypatch.setattr(sync_cli, "configure_logging", lambda level, **kwargs: None)
    cache.session_cache.clear()
    base = [
        "--settings",
        str(tmp_path / "settings.json"),
        "--db",
        str(tmp_path / "store.db"),
        "--cache-file",
        str(tmp_path / "cache.json"),
    ]

    def run(*argv: str) -> int:
        return sync_cli.main(base + list(argv))

    yield run
    cache.session_cache.clear()


def _created_id(output: str, label: str) -> str:
    match = re.search(rf"{label} created: (\S+)", output)
    assert match, output
    return match.group(1)


def test_register_sync_and_report(cli, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli("add-connection", "--name", "Main", "--api-key", API_KEY) == 0
    connection_id = _created_id(capsys.readouterr().out, "Connection")

    assert cli("add-database", connection_id, "--name", "Sales", "--spreadsheet", SHEET_ID) == 0
    database_id = _created_id(capsys.readouterr().out, "Database")

    assert cli("add-table", connection_id, database_id, "--sheet", "Bookings") == 0
    table_id = _created_id(capsys.readouterr().out, "Table")

    assert cli("headers", connection_id, database_id, table_id) == 0
    lines = capsys.readouterr().out.splitlines()
    assert "main_sales_bookings_booking_id" in lines[1]
    key_header = lines[1].split()[2]

    assert cli("sync", connection_id, database_id, table_id) == 1
    assert "No key header selected" in capsys.readouterr().err

    assert cli("set-key", connection_id, database_id, table_id, key_header) == 0
    assert cli("sync", connection_id, database_id, table_id) == 0
    output = capsys.readouterr().out
    assert "Synced 2 rows" in output
    assert "Skipped rows without a key value: 4" in output

    assert cli("set-dashboard", connection_id, database_id, table_id) == 0
    assert cli("dashboard") == 0
    output = capsys.readouterr().out
    assert "Total revenue     : 1,500.00" in output
    assert "Riyadh" in output


def test_unknown_connection_reports_error(cli, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli("test-connection", "missing") == 1
    assert "Connection 'missing' does not exist." in capsys.readouterr().err


def test_invalid_credentials_are_rejected(cli, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli("add-connection", "--name", "Main", "--api-key", "nope") == 1
    assert "API key should start with 'AIza'" in capsys.readouterr().err


def test_dashboard_requires_configuration(cli, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli("dashboard") == 1
    assert "No dashboard table configured" in capsys.readouterr().err


def test_delete_connection(cli, capsys: pytest.CaptureFixture[str]) -> None:
    cli("add-connection", "--name", "Main", "--api-key", API_KEY)
    connection_id = _created_id(capsys.readouterr().out, "Connection")

    assert cli("delete-connection", connection_id) == 0
    capsys.readouterr()
    assert cli("connections") == 0
    assert capsys.readouterr().out == ""


def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        sync_cli.main(["--version"])

    assert excinfo.value.code == 0
    assert sync_cli.__version__ in capsys.readouterr().out


def _register_table(cli, capsys: pytest.CaptureFixture[str], sheet: str) -> tuple[str, str, str]:
    assert cli("add-connection", "--name", "Main", "--api-key", API_KEY) == 0
    connection_id = _created_id(capsys.readouterr().out, "Connection")
    assert cli("add-database", connection_id, "--name", "Sales", "--spreadsheet", SHEET_ID) == 0
    database_id = _created_id(capsys.readouterr().out, "Database")
    assert cli("add-table", connection_id, database_id, "--sheet", sheet) == 0
    table_id = _created_id(capsys.readouterr().out, "Table")
    return connection_id, database_id, table_id


def _header_ids(cli, capsys: pytest.CaptureFixture[str], ids: tuple[str, str, str]) -> List[str]:
    assert cli("headers", *ids) == 0
    lines = capsys.readouterr().out.splitlines()
    return [line.split()[2] for line in lines[:-1]]


def test_header_editing_commands(cli, capsys: pytest.CaptureFixture[str]) -> None:
    ids = _register_table(cli, capsys, "Bookings")
    name_id, booking_id, total_id, _location_id = _header_ids(cli, capsys, ids)

    assert cli("rename-header", *ids, name_id, "Customer") == 0
    assert capsys.readouterr().out.strip() == "Customer -> main_sales_bookings_customer"

    assert cli("set-type", *ids, total_id, "number") == 0
    assert capsys.readouterr().out.strip() == "Total Book: number"

    assert cli("add-header", *ids, "--text", "Notes") == 0
    added_id = _created_id(capsys.readouterr().out, "Header")

    assert cli("set-key", *ids, booking_id) == 0
    capsys.readouterr()
    assert cli("headers", *ids) == 0
    output = capsys.readouterr().out
    assert "main_sales_bookings_notes" in output
    assert output.splitlines()[-1] == "Key column: Booking ID"

    assert cli("remove-header", *ids, added_id) == 0
    assert capsys.readouterr().out.strip() == "Header removed: Notes"
    assert added_id not in _header_ids(cli, capsys, ids)

    assert cli("set-type", *ids, "missing", "number") == 1
    assert "missing" in capsys.readouterr().err


def test_users_and_cards_commands(cli, capsys: pytest.CaptureFixture[str]) -> None:
    ids = _register_table(cli, capsys, "Users")
    name_id = _header_ids(cli, capsys, ids)[0]
    assert cli("set-key", *ids, name_id) == 0
    assert cli("sync", *ids) == 0
    capsys.readouterr()

    assert cli("users") == 0
    lines = capsys.readouterr().out.splitlines()
    assert [line.split()[0] for line in lines] == ["Alice", "Bob", "Cara"]
    assert lines[1] == "Bob  [sales officer]  ConnectionStatus, StatsOverview, RevenueChart"

    assert cli("cards", "cara") == 0
    assert capsys.readouterr().out.splitlines() == ["RevenueChart", "StatsOverview"]

    assert cli("cards", "Cara", "--card", "RevenueChart") == 0
    assert capsys.readouterr().out.strip() == "Cara can view RevenueChart"
    assert cli("cards", "Cara", "--card", "PerformanceIndicators") == 1
    assert capsys.readouterr().out.strip() == "Cara cannot view PerformanceIndicators"

    assert cli("cards", "Zed") == 1
    assert "User 'Zed' was not found" in capsys.readouterr().err


def test_stats_command(cli, capsys: pytest.CaptureFixture[str]) -> None:
    ids = _register_table(cli, capsys, "Users")
    name_id = _header_ids(cli, capsys, ids)[0]
    cli("set-key", *ids, name_id)
    cli("sync", *ids)
    capsys.readouterr()

    assert cli("stats") == 0
    assert capsys.readouterr().out.startswith(f"{'/'.join(ids)}  3 rows  last write ")

    assert cli("stats", *ids) == 0
    assert capsys.readouterr().out.startswith("Users  3 rows  last write ")

    assert cli("stats", ids[0]) == 1
    assert "together" in capsys.readouterr().err


def test_test_connection_if_stale_reuses_recent_result(cli, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli("add-connection", "--name", "Main", "--api-key", API_KEY) == 0
    connection_id = _created_id(capsys.readouterr().out, "Connection")

    assert cli("test-connection", "--if-stale", connection_id) == 0
    assert capsys.readouterr().out.strip() == "Status: connected"

    assert cli("test-connection", "--if-stale", connection_id) == 0
    assert capsys.readouterr().out.startswith("Status: connected (verified ")


def test_cache_status_reports_backend_check(cli, capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    assert cli("cache-status") == 0
    output = capsys.readouterr().out
    assert "Persistent entries: none" in output
    assert "Backend           : not checked" in output

    PersistentCache(tmp_path / "cache.json").set(
        CACHE_KEYS["BACKEND_STATUS"],
        {
            "url": "http://localhost:3001",
            "healthy": False,
            "error": "refused",
            "checkedAt": "2024-05-01T09:00:00+00:00",
        },
    )

    assert cli("cache-status") == 0
    output = capsys.readouterr().out
    assert CACHE_KEYS["BACKEND_STATUS"] in output
    assert "http://localhost:3001 unavailable (refused)" in output
