"""Static sheet names and header rows used when no live source answers."""
from __future__ import annotations

from typing import Dict, List, Sequence

FALLBACK_SHEET_NAMES: Sequence[str] = (
    "KPIs Report",
    "Modules",
    "Notifications",
    "Translations",
    "Users",
    "Bookings",
    "Products",
    "Analytics",
    "Reports",
    "Settings",
    "Dashboard",
    "Metrics",
    "ProductLocation",
    "Gift Cards",
    "Gift Card Purchases",
    "Artist rating",
    "Dropdowns",
    "Calendar",
    "Weeks",
)

DEFAULT_HEADERS: Sequence[str] = ("ID", "Name", "Description", "Status", "Created Date")

FALLBACK_HEADERS: Dict[str, Sequence[str]] = {
    "ProductLocation": ("ID", "Product Name", "Location", "Quantity", "Price"),
    "Gift Cards": ("Card ID", "Value", "Status", "Created Date", "Expiry Date"),
    "Gift Card Purchases": ("Purchase ID", "Card ID", "Amount", "Date", "Customer"),
    "Artist rating": ("Artist ID", "Name", "Rating", "Reviews", "Category"),
    "Dropdowns": ("Option ID", "Option Name", "Category", "Value", "Active"),
    "Calendar": ("Date", "Event", "Description", "Time", "Location"),
    "Weeks": ("Week Number", "Start Date", "End Date", "Revenue", "Bookings"),
    "Users": ("User ID", "Name", "Email", "Role", "Status", "Created Date"),
    "Bookings": ("Booking ID", "User ID", "Service", "Date", "Status", "Amount"),
    "BOOKING X": (
        "Booking ID",
        "Customer Name",
        "Service Type",
        "Date",
        "Time",
        "Status",
        "Amount",
        "Payment Method",
    ),
    "Products": ("Product ID", "Name", "Category", "Price", "Stock", "Description"),
    "Analytics": ("Date", "Metric", "Value", "Source", "Category"),
    "Reports": ("Report ID", "Title", "Type", "Generated Date", "Status"),
    "Settings": ("Setting ID", "Name", "Value", "Category", "Description"),
    "KPIs Report": ("Date", "KPI", "Value", "Target", "Performance"),
    "Modules": ("Module ID", "Name", "Version", "Status", "Description"),
    "Notifications": ("ID", "Title", "Message", "Type", "Date", "Read"),
    "Translations": ("Key", "English", "Arabic", "Context", "Status"),
    "Dashboard": ("Widget ID", "Name", "Type", "Position", "Settings"),
    "Metrics": ("Date", "Metric Name", "Value", "Unit", "Category"),
}


def fallback_sheet_names() -> List[str]:
    return list(FALLBACK_SHEET_NAMES)


def fallback_headers(sheet_name: str) -> List[str]:
    """Return the placeholder header row for ``sheet_name`` (exact match)."""

    return list(FALLBACK_HEADERS.get(sheet_name, DEFAULT_HEADERS))


__all__ = [
    "DEFAULT_HEADERS",
    "FALLBACK_HEADERS",
    "FALLBACK_SHEET_NAMES",
    "fallback_headers",
    "fallback_sheet_names",
]
