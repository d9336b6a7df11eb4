"""Business KPIs computed from synced rows.

Synced rows carry generated variable names (``conn_db_table_header``), so the
aggregator never relies on a fixed schema.  Instead the amount, date,
location, client and status columns are located with :func:`resolve_field`,
a best-effort name search with a deterministic tie-break:

1. candidates are de-duplicated and sorted;
2. names ending in ``_<pattern>`` win, preferring names without a noise
   token (``_plus`` by default) and then the shortest name;
3. otherwise any name containing the pattern, with the same preferences.

Resolution failures never raise.  A missing amount column yields zero
revenue and a missing date column disables date filtering.
"""
from __future__ import annotations

import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .models import SyncedRow
from .repository import Repository

logger = logging.getLogger(__name__)

DEFAULT_NOISE_TOKENS: Sequence[str] = ("_plus",)
_AMOUNT_NOISE = re.compile(r"[,'\"]")
_LEADING_NUMBER = re.compile(r"\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_FALLBACK_DATE_FORMATS: Sequence[str] = (
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%Y.%m.%d",
    "%d.%m.%Y",
)


@dataclass(frozen=True)
class DashboardConfig:
    """Which table backs the dashboard and how its columns are recognised."""

    connection_id: str
    database_id: str
    table_id: str
    amount_pattern: str = "total_book"
    date_pattern: str = "booking_date"
    location_pattern: str = "location"
    client_pattern: str = "name"
    status_pattern: str = "status"
    noise_tokens: Sequence[str] = DEFAULT_NOISE_TOKENS


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day range; either bound may be open."""

    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def is_active(self) -> bool:
        return self.start is not None or self.end is not None

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True


@dataclass
class LocationShare:
    name: str
    value: float
    percentage: float


@dataclass
class DashboardSummary:
    total_revenue: float = 0.0
    total_bookings: int = 0
    average_booking_value: float = 0.0
    unique_clients: int = 0
    location_breakdown: List[LocationShare] = field(default_factory=list)
    revenue_by_month: Dict[str, float] = field(default_factory=dict)
    bookings_by_status: Dict[str, int] = field(default_factory=dict)
    fields: Dict[str, Optional[str]] = field(default_factory=dict)
    excluded_rows: int = 0


# ------------------------------------------------------------------
# Parsing helpers
# ------------------------------------------------------------------
def _has_noise(name: str, noise_tokens: Sequence[str]) -> bool:
    return any(token in name for token in noise_tokens)


def resolve_field(
    candidates: Iterable[str],
    pattern: str,
    noise_tokens: Sequence[str] = DEFAULT_NOISE_TOKENS,
) -> Optional[str]:
    """Return the variable name that best matches ``pattern`` or ``None``."""

    if not pattern:
        return None
    names = sorted(set(candidates))

    def ranking(name: str) -> tuple:
        return (_has_noise(name, noise_tokens), len(name), name)

    suffix = f"_{pattern}"
    suffix_matches = [name for name in names if name == pattern or name.endswith(suffix)]
    if suffix_matches:
        return min(suffix_matches, key=ranking)

    substring_matches = [name for name in names if pattern in name]
    if substring_matches:
        return min(substring_matches, key=ranking)
    return None


def parse_amount(value: Any) -> float:
    """Return the leading number of ``value``; anything unparseable counts as zero.

    Thousands separators and quotes are dropped first, so ``"1,234.50 SAR"``
    reads as ``1234.5``.
    """

    if value is None:
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if math.isfinite(value) else 0.0
    match = _LEADING_NUMBER.match(_AMOUNT_NOISE.sub("", str(value)))
    if match is None:
        return 0.0
    amount = float(match.group(0))
    return amount if math.isfinite(amount) else 0.0


def parse_date(value: Any) -> Optional[date]:
    """Parse ``MM/DD/YYYY``, ISO dates and a few spelled-out formats."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        return None

    if "/" in text:
        parts = text.split()[0].split("/")
        if len(parts) != 3:
            return None
        try:
            month, day, year = (int(part) for part in parts)
            if year < 100:
                year += 2000
            return date(year, month, day)
        except ValueError:
            return None

    if "-" in text:
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None

    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _row_fields(row: Any) -> Mapping[str, Any]:
    if isinstance(row, SyncedRow):
        return row.fields
    return row


# ------------------------------------------------------------------
# Aggregation
# ------------------------------------------------------------------
def summarise(
    rows: Sequence[Any],
    config: DashboardConfig,
    date_range: Optional[DateRange] = None,
) -> DashboardSummary:
    """Reduce ``rows`` (``SyncedRow`` objects or field mappings) to KPIs."""

    records = [_row_fields(row) for row in rows]
    candidates = {name for record in records for name in record}
    resolved = {
        "amount": resolve_field(candidates, config.amount_pattern, config.noise_tokens),
        "date": resolve_field(candidates, config.date_pattern, config.noise_tokens),
        "location": resolve_field(candidates, config.location_pattern, config.noise_tokens),
        "client": resolve_field(candidates, config.client_pattern, config.noise_tokens),
        "status": resolve_field(candidates, config.status_pattern, config.noise_tokens),
    }
    summary = DashboardSummary(fields=resolved)
    if records and resolved["amount"] is None:
        logger.info("No amount column matching '%s'; revenue reported as zero", config.amount_pattern)

    filtering = date_range is not None and date_range.is_active and resolved["date"] is not None
    if date_range is not None and date_range.is_active and resolved["date"] is None:
        logger.info("No date column matching '%s'; date filter ignored", config.date_pattern)

    locations: Dict[str, float] = defaultdict(float)
    months: Dict[str, float] = defaultdict(float)
    statuses: Dict[str, int] = defaultdict(int)
    clients: set[str] = set()

    for record in records:
        day = parse_date(record.get(resolved["date"])) if resolved["date"] else None
        if filtering:
            if day is None or not date_range.contains(day):
                summary.excluded_rows += 1
                continue

        amount = parse_amount(record.get(resolved["amount"])) if resolved["amount"] else 0.0
        summary.total_revenue += amount
        summary.total_bookings += 1

        if day is not None:
            months[day.strftime("%Y-%m")] += amount
        if resolved["location"]:
            location = str(record.get(resolved["location"]) or "").strip() or "Unknown"
            locations[location] += amount
        if resolved["client"]:
            client = str(record.get(resolved["client"]) or "").strip()
            if client:
                clients.add(client.lower())
        if resolved["status"]:
            status = str(record.get(resolved["status"]) or "").strip() or "Unknown"
            statuses[status] += 1

    summary.total_revenue = round(summary.total_revenue, 2)
    if summary.total_bookings:
        summary.average_booking_value = round(summary.total_revenue / summary.total_bookings, 2)
    summary.unique_clients = len(clients)
    summary.location_breakdown = _location_shares(locations, summary.total_revenue)
    summary.revenue_by_month = {month: round(months[month], 2) for month in sorted(months)}
    summary.bookings_by_status = dict(sorted(statuses.items(), key=lambda item: (-item[1], item[0])))
    return summary


def _location_shares(totals: Mapping[str, float], grand_total: float) -> List[LocationShare]:
    shares = [
        LocationShare(
            name=name,
            value=round(value, 2),
            percentage=round(value / grand_total * 100, 2) if grand_total else 0.0,
        )
        for name, value in totals.items()
    ]
    shares.sort(key=lambda share: (-share.value, share.name))
    return shares


def load_summary(
    repository: Repository,
    config: DashboardConfig,
    date_range: Optional[DateRange] = None,
) -> DashboardSummary:
    """Summarise the synced rows of the table named by ``config``."""

    rows = repository.load_synced_rows(config.connection_id, config.database_id, config.table_id)
    if not rows:
        logger.info("Dashboard table %s has no synced rows", config.table_id)
    return summarise(rows, config, date_range)


__all__ = [
    "DashboardConfig",
    "DashboardSummary",
    "DateRange",
    "LocationShare",
    "load_summary",
    "parse_amount",
    "parse_date",
    "resolve_field",
    "summarise",
]
