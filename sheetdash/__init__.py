"""SheetDash: Google Sheets registration, sync and KPI aggregation."""

from .version import __version__

__all__ = ["__version__"]
