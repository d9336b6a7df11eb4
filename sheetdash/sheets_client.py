"""Sheet access with an ordered chain of authentication strategies.

Every read is attempted through a list of :class:`SheetStrategy` objects:

* the authenticated backend proxy, used when a connection carries service
  account credentials;
* the public Sheets API with a bare API key;
* a static catalog of plausible sheet names and header rows.

The driver tries each applicable strategy in order and returns the first
success wrapped in a :class:`FetchResult` that records where the data came
from.  Strategy failures are logged and collected but never raised, except
for :meth:`SheetAccessClient.fetch_data` which has no safe default and raises
:class:`SheetsFetchError` once the chain is exhausted.

Sheet name lists obtained from a live source are cached per spreadsheet id so
that repeated wizard steps do not hit the network again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from . import fallback_catalog
from .backend_proxy import DEFAULT_BACKEND_URL, BackendProxyClient, BackendProxyStrategy
from .cache import PersistentCache, SessionCache, session_cache
from .models import Connection, DataSource
from .public_api import PublicApiStrategy, ServiceFactory, build_service
from .sheets_base import (
    DEFAULT_HEADER_RANGE,
    AccessResult,
    SheetStrategy,
    SheetsClientError,
    SheetsConfigurationError,
    SheetsEmptyResultError,
    SheetsFetchError,
)

logger = logging.getLogger(__name__)

SHEET_NAMES_TTL_MINUTES = 30


@dataclass(slots=True)
class FetchResult:
    """Value returned by a strategy plus the path that produced it."""

    value: Any
    source: DataSource
    errors: List[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.source is DataSource.FALLBACK


class StaticFallbackStrategy(SheetStrategy):
    """Serve placeholder sheet names and headers from the static catalog."""

    name = "static fallback"
    source = DataSource.FALLBACK
    live = False

    def applies_to(self, connection: Connection) -> bool:
        return True

    def test_access(self, spreadsheet_id: str, connection: Connection) -> AccessResult:
        raise SheetsClientError("Static fallback cannot verify spreadsheet access.")

    def list_sheets(self, spreadsheet_id: str, connection: Connection) -> List[str]:
        return fallback_catalog.fallback_sheet_names()

    def fetch_headers(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: str = DEFAULT_HEADER_RANGE,
    ) -> List[str]:
        return fallback_catalog.fallback_headers(sheet_name)

    def fetch_data(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: Optional[str] = None,
    ) -> List[List[str]]:
        raise SheetsEmptyResultError("No fallback data exists for sheet rows.")


def default_strategies(
    backend_url: str = DEFAULT_BACKEND_URL,
    *,
    cache: Optional[SessionCache] = None,
    timeout: Optional[float] = None,
    service_factory: ServiceFactory = build_service,
    healthy_ttl_minutes: float = 5,
    unhealthy_ttl_minutes: float = 1,
    persistent: Optional[PersistentCache] = None,
) -> List[SheetStrategy]:
    """Return the standard backend → public API → fallback chain."""

    proxy = BackendProxyClient(
        backend_url,
        cache=cache,
        timeout=timeout,
        healthy_ttl_minutes=healthy_ttl_minutes,
        unhealthy_ttl_minutes=unhealthy_ttl_minutes,
        persistent=persistent,
    )
    return [
        BackendProxyStrategy(proxy),
        PublicApiStrategy(service_factory),
        StaticFallbackStrategy(),
    ]


def _require(value: str, label: str) -> str:
    text = (value or "").strip()
    if not text:
        raise SheetsConfigurationError(f"{label} is required.")
    return text


class SheetAccessClient:
    """Resolve sheet names, header rows and data through the strategy chain."""

    def __init__(
        self,
        strategies: Optional[Sequence[SheetStrategy]] = None,
        *,
        cache: Optional[SessionCache] = None,
        sheet_names_ttl_minutes: float = SHEET_NAMES_TTL_MINUTES,
    ) -> None:
        self._cache = cache if cache is not None else session_cache
        self._strategies: List[SheetStrategy] = (
            list(strategies) if strategies is not None else default_strategies(cache=self._cache)
        )
        self._sheet_names_ttl = sheet_names_ttl_minutes

    @property
    def strategies(self) -> List[SheetStrategy]:
        return list(self._strategies)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_sheets(self, spreadsheet_id: str, connection: Connection) -> FetchResult:
        spreadsheet_id = _require(spreadsheet_id, "Spreadsheet id")
        cache_key = f"sheets_{spreadsheet_id}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            names, source = cached
            logger.debug("Using cached sheet names for %s", spreadsheet_id)
            return FetchResult(list(names), source)

        result = self._run(
            "list sheets",
            connection,
            lambda strategy: strategy.list_sheets(spreadsheet_id, connection),
        )
        if not result.is_fallback:
            self._cache.set(cache_key, (list(result.value), result.source), self._sheet_names_ttl)
        return result

    def fetch_headers(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: str = DEFAULT_HEADER_RANGE,
    ) -> FetchResult:
        spreadsheet_id = _require(spreadsheet_id, "Spreadsheet id")
        _require(sheet_name, "Sheet name")
        return self._run(
            f"fetch headers for '{sheet_name}'",
            connection,
            lambda strategy: strategy.fetch_headers(spreadsheet_id, sheet_name, connection, cell_range),
        )

    def fetch_data(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        connection: Connection,
        cell_range: Optional[str] = None,
    ) -> FetchResult:
        """Return the rows of ``sheet_name`` or raise :class:`SheetsFetchError`."""

        spreadsheet_id = _require(spreadsheet_id, "Spreadsheet id")
        _require(sheet_name, "Sheet name")
        return self._run(
            f"fetch data for '{sheet_name}'",
            connection,
            lambda strategy: strategy.fetch_data(spreadsheet_id, sheet_name, connection, cell_range),
            live_only=True,
        )

    def test_access(self, spreadsheet_id: str, connection: Connection) -> AccessResult:
        """Check that some live strategy can read ``spreadsheet_id``."""

        spreadsheet_id = _require(spreadsheet_id, "Spreadsheet id")
        errors: List[str] = []
        for strategy in self._applicable(connection, live_only=True):
            try:
                result = strategy.test_access(spreadsheet_id, connection)
            except SheetsClientError as exc:
                logger.warning("Access test via %s failed: %s", strategy.name, exc)
                errors.append(str(exc))
                continue
            if result.has_access:
                return result
            errors.append(result.error or f"Access denied via {strategy.name}")

        if not errors:
            errors.append("No credentials configured. Add an API key or service account to the connection.")
        return AccessResult(has_access=False, error="; ".join(errors))

    def invalidate_sheet_names(self, spreadsheet_id: str) -> None:
        self._cache.clear(f"sheets_{spreadsheet_id.strip()}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _applicable(self, connection: Connection, *, live_only: bool) -> List[SheetStrategy]:
        return [
            strategy
            for strategy in self._strategies
            if (strategy.live or not live_only) and strategy.applies_to(connection)
        ]

    def _run(
        self,
        operation: str,
        connection: Connection,
        call: Callable[[SheetStrategy], Any],
        *,
        live_only: bool = False,
    ) -> FetchResult:
        errors: List[str] = []
        for strategy in self._applicable(connection, live_only=live_only):
            try:
                value = call(strategy)
            except SheetsClientError as exc:
                logger.warning("%s via %s failed: %s", operation.capitalize(), strategy.name, exc)
                errors.append(f"{strategy.name}: {exc}")
                continue
            if not strategy.live:
                logger.warning("Using fallback data to %s; live sources failed", operation)
            else:
                logger.info("%s via %s succeeded", operation.capitalize(), strategy.name)
            return FetchResult(value, strategy.source, errors)

        if not errors:
            message = f"Unable to {operation}: no credentials configured for '{connection.name}'."
        else:
            message = f"Unable to {operation}: " + "; ".join(errors)
        logger.error(message)
        raise SheetsFetchError(message, errors)


__all__ = [
    "FetchResult",
    "SHEET_NAMES_TTL_MINUTES",
    "SheetAccessClient",
    "StaticFallbackStrategy",
    "default_strategies",
]
