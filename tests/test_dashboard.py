from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetdash.dashboard import (
    DashboardConfig,
    DateRange,
    load_summary,
    parse_amount,
    parse_date,
    resolve_field,
    summarise,
)
from sheetdash.models import SyncedRow
from sheetdash.repository import Repository

CONFIG = DashboardConfig(connection_id="c1", database_id="d1", table_id="t1")

ROWS = [
    {
        "m_s_b_client_name": "Alice",
        "m_s_b_total_book": "1,200",
        "m_s_b_total_book_plus": "9999",
        "m_s_b_booking_date": "01/15/2024",
        "m_s_b_location": "Riyadh",
        "m_s_b_status": "Confirmed",
    },
    {
        "m_s_b_client_name": "bob",
        "m_s_b_total_book": "800",
        "m_s_b_booking_date": "2024-02-03",
        "m_s_b_location": "Jeddah",
        "m_s_b_status": "Pending",
    },
    {
        "m_s_b_client_name": "ALICE",
        "m_s_b_total_book": "'1000",
        "m_s_b_booking_date": "2024-02-20",
        "m_s_b_location": "Riyadh",
        "m_s_b_status": "Confirmed",
    },
]


def test_resolve_field_prefers_exact_suffix_without_noise() -> None:
    assert resolve_field(["x_total_book", "x_total_book_plus"], "total_book") == "x_total_book"
    assert resolve_field(["x_total_book_plus", "x_total_book"], "total_book") == "x_total_book"


def test_resolve_field_falls_back_to_substring_then_none() -> None:
    assert resolve_field(["a_total_booking_amount"], "total_book") == "a_total_booking_amount"
    assert resolve_field(["a_name"], "total_book") is None
    assert resolve_field([], "total_book") is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1,234.50", 1234.5),
        ("'500", 500.0),
        (' "42" ', 42.0),
        (7, 7.0),
        ("", 0.0),
        (None, 0.0),
        ("1,234.50 SAR", 1234.5),
        ("-75 (refund)", -75.0),
        (".5", 0.5),
        ("SAR 100", 0.0),
        ("n/a", 0.0),
        ("inf", 0.0),
    ],
)
def test_parse_amount(value, expected: float) -> None:
    assert parse_amount(value) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("01/15/2024", date(2024, 1, 15)),
        ("1/5/24 10:30", date(2024, 1, 5)),
        ("2024-02-03", date(2024, 2, 3)),
        ("2024-02-03T10:00:00Z", date(2024, 2, 3)),
        ("3 Feb 2024", date(2024, 2, 3)),
        ("13/45/2024", None),
        ("soon", None),
        ("", None),
    ],
)
def test_parse_date(value: str, expected) -> None:
    assert parse_date(value) == expected


def test_summarise_totals_and_breakdowns() -> None:
    summary = summarise(ROWS, CONFIG)

    assert summary.fields["amount"] == "m_s_b_total_book"
    assert summary.total_revenue == 3000.0
    assert summary.total_bookings == 3
    assert summary.average_booking_value == 1000.0
    assert summary.unique_clients == 2
    assert [(share.name, share.value, share.percentage) for share in summary.location_breakdown] == [
        ("Riyadh", 2200.0, 73.33),
        ("Jeddah", 800.0, 26.67),
    ]
    assert summary.revenue_by_month == {"2024-01": 1200.0, "2024-02": 1800.0}
    assert summary.bookings_by_status == {"Confirmed": 2, "Pending": 1}


def test_summarise_applies_inclusive_date_range() -> None:
    summary = summarise(ROWS, CONFIG, DateRange(start=date(2024, 2, 1), end=date(2024, 2, 3)))

    assert summary.total_bookings == 1
    assert summary.total_revenue == 800.0
    assert summary.excluded_rows == 2


def test_missing_amount_column_degrades_to_zero() -> None:
    rows = [{"x_client_name": "Alice", "x_booking_date": "2024-01-01"}]

    summary = summarise(rows, CONFIG)

    assert summary.fields["amount"] is None
    assert summary.total_revenue == 0.0
    assert summary.total_bookings == 1
    assert summary.location_breakdown == []


def test_missing_date_column_ignores_filter() -> None:
    rows = [{"x_total_book": "10"}, {"x_total_book": "5"}]

    summary = summarise(rows, CONFIG, DateRange(start=date(2030, 1, 1)))

    assert summary.total_revenue == 15.0
    assert summary.excluded_rows == 0


def test_empty_rows_give_zero_summary() -> None:
    summary = summarise([], CONFIG)

    assert summary.total_revenue == 0.0
    assert summary.average_booking_value == 0.0


def test_load_summary_reads_synced_rows(repository: Repository) -> None:
    repository.save_synced_rows(
        SyncedRow(id=str(index), fields=fields, connection_id="c1", database_id="d1", table_id="t1", row_index=index + 2)
        for index, fields in enumerate(ROWS)
    )

    summary = load_summary(repository, CONFIG)

    assert summary.total_revenue == 3000.0
