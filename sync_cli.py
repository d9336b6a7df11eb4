"""Command line tool for registering Google Sheets and syncing their rows."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

import db
import settings as app_settings
from sheetdash import __version__, access, cache, header_mapper
from sheetdash.backend_proxy import BackendProxyClient
from sheetdash.dashboard import DashboardConfig, DateRange, load_summary
from sheetdash.google_credentials import CredentialsInvalidError
from sheetdash.header_mapper import HeaderMappingError
from sheetdash.logging_config import configure_logging
from sheetdash.models import Connection, Database, DataType, Region, Table
from sheetdash.registry import Registry, RegistryError
from sheetdash.repository import Repository
from sheetdash.sheets_base import SheetsClientError
from sheetdash.sheets_client import SheetAccessClient, default_strategies
from sheetdash.sync_service import SyncOrchestrator

_HANDLED_ERRORS = (
    RegistryError,
    CredentialsInvalidError,
    HeaderMappingError,
    SheetsClientError,
    db.DocumentStoreError,
)


@dataclass
class Services:
    settings: app_settings.AppSettings
    client: SheetAccessClient
    repository: Repository
    registry: Registry
    orchestrator: SyncOrchestrator
    persistent: cache.PersistentCache


def build_client(
    config: app_settings.AppSettings, persistent: Optional[cache.PersistentCache] = None
) -> SheetAccessClient:
    strategies = default_strategies(
        config.backend_url,
        persistent=persistent,
        timeout=config.request_timeout_seconds,
        healthy_ttl_minutes=config.health_ttl_minutes,
        unhealthy_ttl_minutes=config.health_failure_ttl_minutes,
    )
    return SheetAccessClient(strategies, sheet_names_ttl_minutes=config.sheet_names_ttl_minutes)


def build_services(args: argparse.Namespace) -> Services:
    config = app_settings.load_settings(args.settings)
    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.INFO)
    configure_logging(level, console=args.verbose)
    if args.db:
        db.set_database_path(Path(args.db))
    persistent = cache.PersistentCache(Path(args.cache_file) if args.cache_file else None)
    client = build_client(config, persistent)
    repository = Repository()
    return Services(
        settings=config,
        client=client,
        repository=repository,
        registry=Registry(client, repository, persistent=persistent),
        orchestrator=SyncOrchestrator(client, repository, log_callback=print),
        persistent=persistent,
    )


def _connection(services: Services, connection_id: str) -> Connection:
    connection = services.repository.load_connection(connection_id)
    if connection is None:
        raise RegistryError(f"Connection '{connection_id}' does not exist.")
    return connection


def _database(services: Services, connection_id: str, database_id: str) -> Database:
    database = services.repository.load_database(connection_id, database_id)
    if database is None:
        raise RegistryError(f"Database '{database_id}' does not exist.")
    return database


def _table(services: Services, connection_id: str, database_id: str, table_id: str) -> Table:
    table = services.repository.load_table(connection_id, database_id, table_id)
    if table is None:
        raise RegistryError(f"Table '{table_id}' does not exist.")
    return table


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
def command_add_connection(args: argparse.Namespace, services: Services) -> int:
    private_key = ""
    if args.private_key_file:
        private_key = Path(args.private_key_file).read_text(encoding="utf-8")
    connection = services.registry.register_connection(
        args.name,
        Region(args.region),
        api_key=args.api_key or "",
        client_email=args.client_email or "",
        private_key=private_key,
        project_id=args.project_id or "",
    )
    print(f"Connection created: {connection.id}")
    return 0


def command_list_connections(args: argparse.Namespace, services: Services) -> int:
    region = Region(args.region) if args.region else None
    for connection in services.repository.load_connections(region):
        line = f"{connection.id}  {connection.name}  [{connection.region.value}]  {connection.status.value}"
        if connection.error_message:
            line += f"  ({connection.error_message})"
        print(line)
    return 0


def command_test_connection(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    if args.if_stale and not services.registry.should_reverify_connection(connection):
        status = services.registry.cached_connection_status(connection.id) or connection.status.value
        print(f"Status: {status} (verified {connection.last_tested:%Y-%m-%d %H:%M} UTC)")
        return 0
    connection = services.registry.test_connection(connection)
    print(f"Status: {connection.status.value}")
    if connection.error_message:
        print(f"Message: {connection.error_message}")
    return 0 if connection.error_message is None else 1


def command_delete_connection(args: argparse.Namespace, services: Services) -> int:
    _connection(services, args.connection)
    services.repository.delete_connection(args.connection)
    print(f"Connection deleted: {args.connection}")
    return 0


def command_add_database(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = services.registry.register_database(connection, args.name, args.spreadsheet)
    print(f"Database created: {database.id} ({database.status.value})")
    if database.error_message:
        print(f"Message: {database.error_message}")
    return 0


def command_list_sheets(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    database = services.registry.refresh_sheet_names(connection, database, force=args.refresh)
    if database.error_message:
        print(f"Warning: {database.error_message}", file=sys.stderr)
    for name in database.available_sheet_names:
        print(name)
    return 0


def command_add_table(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = services.registry.register_table(connection, database, args.sheet, args.name)
    print(f"Table created: {table.id} with {table.total_headers} headers ({table.status.value})")
    if table.error_message:
        print(f"Warning: {table.error_message}", file=sys.stderr)
    return 0


def command_headers(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = _table(services, args.connection, args.database, args.table)
    if args.refresh:
        mappings = services.registry.refresh_headers(connection, database, table)
    else:
        mappings = services.repository.load_headers(connection.id, database.id, table.id)
    for mapping in mappings:
        flags = ("K" if mapping.is_key else "-") + ("E" if mapping.is_enabled else "-")
        print(f"{mapping.column_index:>3} {flags} {mapping.id}  {mapping.original_header} -> {mapping.variable_name}")
    key = header_mapper.key_mapping(mappings)
    print(f"Key column: {key.original_header if key else 'none'}")
    return 0


def command_set_key(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = _table(services, args.connection, args.database, args.table)
    mapping = services.registry.set_key_header(connection, database, table, args.header)
    print(f"Key column: {mapping.original_header}")
    return 0


def command_toggle_header(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = _table(services, args.connection, args.database, args.table)
    mapping = services.registry.set_header_enabled(connection, database, table, args.header, not args.disable)
    print(f"{mapping.original_header}: {'enabled' if mapping.is_enabled else 'disabled'}")
    return 0


def command_rename_header(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = _table(services, args.connection, args.database, args.table)
    mapping = services.registry.rename_header(connection, database, table, args.header, args.text)
    print(f"{mapping.original_header} -> {mapping.variable_name}")
    return 0


def command_set_type(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = _table(services, args.connection, args.database, args.table)
    mapping = services.registry.set_header_type(connection, database, table, args.header, DataType(args.type))
    print(f"{mapping.original_header}: {mapping.data_type.value}")
    return 0


def command_add_header(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = _table(services, args.connection, args.database, args.table)
    mapping = services.registry.add_header(connection, database, table, args.text)
    print(f"Header created: {mapping.id} ({mapping.original_header} -> {mapping.variable_name})")
    return 0


def command_remove_header(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = _table(services, args.connection, args.database, args.table)
    mapping = services.registry.remove_header(connection, database, table, args.header)
    print(f"Header removed: {mapping.original_header}")
    if mapping.is_key:
        print("Warning: the key column was removed; choose a new one with 'set-key'.", file=sys.stderr)
    return 0


def command_sync(args: argparse.Namespace, services: Services) -> int:
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = _table(services, args.connection, args.database, args.table)
    report = services.orchestrator.sync_table(connection, database, table)
    if not report.success:
        print(f"Error: {report.error}", file=sys.stderr)
        return 1
    if report.skipped_rows:
        rows = ", ".join(str(row) for row in report.skipped_rows)
        print(f"Skipped rows without a key value: {rows}")
    return 0


def _print_stats(label: str, stats: dict) -> None:
    last_sync = stats["last_sync"]
    when = f"{last_sync:%Y-%m-%d %H:%M} UTC" if last_sync else "never"
    print(f"{label}  {stats['row_count']} rows  last write {when}")


def command_stats(args: argparse.Namespace, services: Services) -> int:
    ids = [args.connection, args.database, args.table]
    if not any(ids):
        for location in services.repository.synced_tables():
            _print_stats("/".join(location), services.repository.data_stats(*location))
        return 0
    if not all(ids):
        raise RegistryError("Give the connection, database and table ids together.")
    connection = _connection(services, args.connection)
    database = _database(services, args.connection, args.database)
    table = _table(services, args.connection, args.database, args.table)
    _print_stats(table.name, services.orchestrator.data_stats(connection, database, table))
    return 0


def command_set_dashboard(args: argparse.Namespace, services: Services) -> int:
    _table(services, args.connection, args.database, args.table)
    services.settings.dashboard = app_settings.DashboardSource(args.connection, args.database, args.table)
    app_settings.save_settings(services.settings, args.settings)
    print("Dashboard table updated.")
    return 0


def command_dashboard(args: argparse.Namespace, services: Services) -> int:
    source = services.settings.dashboard
    if not source.is_configured():
        raise RegistryError("No dashboard table configured. Run 'set-dashboard' first.")
    config = DashboardConfig(source.connection_id, source.database_id, source.table_id)
    summary = load_summary(
        services.repository,
        config,
        DateRange(_parse_day(args.start), _parse_day(args.end)),
    )
    print(f"Total revenue     : {summary.total_revenue:,.2f}")
    print(f"Total bookings    : {summary.total_bookings}")
    print(f"Average booking   : {summary.average_booking_value:,.2f}")
    print(f"Unique clients    : {summary.unique_clients}")
    for share in summary.location_breakdown:
        print(f"  {share.name:<20} {share.value:>12,.2f} {share.percentage:>6.2f}%")
    return 0


def command_users(args: argparse.Namespace, services: Services) -> int:
    for user in access.load_users(services.repository):
        print(f"{user.name}  [{user.role or 'no role'}]  {', '.join(access.allowed_cards(user))}")
    return 0


def command_cards(args: argparse.Namespace, services: Services) -> int:
    user = access.find_user(access.load_users(services.repository), args.user)
    if user is None:
        raise RegistryError(f"User '{args.user}' was not found in a synced users table.")
    if args.card:
        allowed = access.can_view(user, args.card)
        print(f"{user.name} {'can' if allowed else 'cannot'} view {args.card}")
        return 0 if allowed else 1
    for card in access.allowed_cards(user):
        print(card)
    return 0


def command_cache_clear(args: argparse.Namespace, services: Services) -> int:
    cache.clear_all_caches(persistent=services.persistent)
    print("Caches cleared.")
    return 0


def command_cache_status(args: argparse.Namespace, services: Services) -> int:
    status = cache.cache_status(persistent=services.persistent)
    print(f"Session entries   : {status['session_entries']}")
    print(f"Persistent entries: {', '.join(status['persistent_entries']) or 'none'}")
    health = BackendProxyClient(services.settings.backend_url, persistent=services.persistent).last_health()
    if health is None:
        print("Backend           : not checked")
    else:
        state = "healthy" if health.get("healthy") else f"unavailable ({health.get('error')})"
        print(f"Backend           : {health.get('url')} {state} at {health.get('checkedAt')}")
    return 0


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------
def _add_table_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("connection", help="Connection id")
    parser.add_argument("database", help="Database id")
    parser.add_argument("table", help="Table id")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SheetDash sheet registration and sync tool")
    parser.add_argument("--settings", default=app_settings.DEFAULT_SETTINGS_PATH, help="Settings JSON file")
    parser.add_argument("--db", help="Document store file (defaults to the application data directory)")
    parser.add_argument("--cache-file", help="Persistent cache file (defaults to the application cache directory)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    add_connection = subparsers.add_parser("add-connection", help="Register a Google Sheets credential set")
    add_connection.add_argument("--name", required=True)
    add_connection.add_argument("--region", choices=[region.value for region in Region], default=Region.SAUDI.value)
    add_connection.add_argument("--api-key")
    add_connection.add_argument("--client-email")
    add_connection.add_argument("--private-key-file", help="File holding the service account private key")
    add_connection.add_argument("--project-id")
    add_connection.set_defaults(func=command_add_connection)

    list_connections = subparsers.add_parser("connections", help="List registered connections")
    list_connections.add_argument("--region", choices=[region.value for region in Region])
    list_connections.set_defaults(func=command_list_connections)

    test_connection = subparsers.add_parser("test-connection", help="Verify a connection's credentials")
    test_connection.add_argument("connection")
    test_connection.add_argument(
        "--if-stale", action="store_true", help="Skip the check when the last one is under an hour old"
    )
    test_connection.set_defaults(func=command_test_connection)

    delete_connection = subparsers.add_parser("delete-connection", help="Delete a connection and everything below it")
    delete_connection.add_argument("connection")
    delete_connection.set_defaults(func=command_delete_connection)

    add_database = subparsers.add_parser("add-database", help="Register a spreadsheet under a connection")
    add_database.add_argument("connection")
    add_database.add_argument("--name", required=True)
    add_database.add_argument("--spreadsheet", required=True, help="Spreadsheet URL or id")
    add_database.set_defaults(func=command_add_database)

    list_sheets = subparsers.add_parser("list-sheets", help="Show the tabs of a registered spreadsheet")
    list_sheets.add_argument("connection")
    list_sheets.add_argument("database")
    list_sheets.add_argument("--refresh", action="store_true", help="Ignore the cached sheet list")
    list_sheets.set_defaults(func=command_list_sheets)

    add_table = subparsers.add_parser("add-table", help="Map a sheet tab as a table")
    add_table.add_argument("connection")
    add_table.add_argument("database")
    add_table.add_argument("--sheet", required=True, help="Exact tab name")
    add_table.add_argument("--name", help="Table name (defaults to the tab name)")
    add_table.set_defaults(func=command_add_table)

    headers = subparsers.add_parser("headers", help="Show a table's header mappings")
    _add_table_args(headers)
    headers.add_argument("--refresh", action="store_true", help="Re-read the header row first")
    headers.set_defaults(func=command_headers)

    set_key = subparsers.add_parser("set-key", help="Choose the key column of a table")
    _add_table_args(set_key)
    set_key.add_argument("header", help="Header id")
    set_key.set_defaults(func=command_set_key)

    toggle = subparsers.add_parser("toggle-header", help="Enable or disable a header")
    _add_table_args(toggle)
    toggle.add_argument("header", help="Header id")
    toggle.add_argument("--disable", action="store_true")
    toggle.set_defaults(func=command_toggle_header)

    rename = subparsers.add_parser("rename-header", help="Change a header's text and variable name")
    _add_table_args(rename)
    rename.add_argument("header", help="Header id")
    rename.add_argument("text", help="New header text")
    rename.set_defaults(func=command_rename_header)

    set_type = subparsers.add_parser("set-type", help="Set the data type of a header")
    _add_table_args(set_type)
    set_type.add_argument("header", help="Header id")
    set_type.add_argument("type", choices=[data_type.value for data_type in DataType])
    set_type.set_defaults(func=command_set_type)

    add_header = subparsers.add_parser("add-header", help="Append a manually defined column")
    _add_table_args(add_header)
    add_header.add_argument("--text", help="Header text (defaults to 'Column N')")
    add_header.set_defaults(func=command_add_header)

    remove_header = subparsers.add_parser("remove-header", help="Delete a header mapping")
    _add_table_args(remove_header)
    remove_header.add_argument("header", help="Header id")
    remove_header.set_defaults(func=command_remove_header)


    sync = subparsers.add_parser("sync", help="Replace a table's synced rows with the sheet contents")
    _add_table_args(sync)
    sync.set_defaults(func=command_sync)

    stats = subparsers.add_parser("stats", help="Show synced row counts (all tables when no ids are given)")
    stats.add_argument("connection", nargs="?", help="Connection id")
    stats.add_argument("database", nargs="?", help="Database id")
    stats.add_argument("table", nargs="?", help="Table id")
    stats.set_defaults(func=command_stats)


    set_dashboard = subparsers.add_parser("set-dashboard", help="Choose the table that feeds the dashboard")
    _add_table_args(set_dashboard)
    set_dashboard.set_defaults(func=command_set_dashboard)

    dashboard = subparsers.add_parser("dashboard", help="Print revenue and booking KPIs")
    dashboard.add_argument("--start", help="First day to include (YYYY-MM-DD)")
    dashboard.add_argument("--end", help="Last day to include (YYYY-MM-DD)")
    dashboard.set_defaults(func=command_dashboard)

    users = subparsers.add_parser("users", help="List users from the synced users table with their cards")
    users.set_defaults(func=command_users)

    cards = subparsers.add_parser("cards", help="Show the dashboard cards a user may see")
    cards.add_argument("user", help="User name")
    cards.add_argument("--card", help="Only check whether this card is visible")
    cards.set_defaults(func=command_cards)


    cache_clear = subparsers.add_parser("cache-clear", help="Clear session and persistent caches")
    cache_clear.set_defaults(func=command_cache_clear)

    cache_status = subparsers.add_parser("cache-status", help="Show cache contents and the last backend check")
    cache_status.set_defaults(func=command_cache_status)


    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        services = build_services(args)
        return args.func(args, services)
    except _HANDLED_ERRORS as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
        return 2


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
