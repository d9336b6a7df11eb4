"""Application configuration helpers for SheetDash."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from sheetdash import app_paths


logger = logging.getLogger(__name__)


DEFAULT_SETTINGS_PATH = str(app_paths.data_path("settings.json"))
DEFAULT_BACKEND_URL = os.getenv("SHEETDASH_BACKEND_URL", "http://localhost:3001")
DEFAULT_LOG_LEVEL = os.getenv("SHEETDASH_LOG_LEVEL", "INFO")

MIN_TTL_MINUTES = 0.5
MAX_TTL_MINUTES = 24 * 60


@dataclass
class DashboardSource:
    """The table whose synced rows feed the dashboard."""

    connection_id: str = ""
    database_id: str = ""
    table_id: str = ""

    def is_configured(self) -> bool:
        return bool(self.connection_id and self.database_id and self.table_id)


@dataclass
class AppSettings:
    backend_url: str = DEFAULT_BACKEND_URL
    request_timeout_seconds: Optional[float] = None
    health_ttl_minutes: float = 5
    health_failure_ttl_minutes: float = 1
    sheet_names_ttl_minutes: float = 30
    log_level: str = DEFAULT_LOG_LEVEL
    dashboard: DashboardSource = field(default_factory=DashboardSource)

    def to_json(self) -> Dict[str, object]:
        return {
            "backend_url": self.backend_url,
            "request_timeout_seconds": self.request_timeout_seconds,
            "health_ttl_minutes": self.health_ttl_minutes,
            "health_failure_ttl_minutes": self.health_failure_ttl_minutes,
            "sheet_names_ttl_minutes": self.sheet_names_ttl_minutes,
            "log_level": self.log_level,
            "dashboard": {
                "connection_id": self.dashboard.connection_id,
                "database_id": self.dashboard.database_id,
                "table_id": self.dashboard.table_id,
            },
        }


def _clamp_ttl(value: Any, default: float) -> float:
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return default
    return max(MIN_TTL_MINUTES, min(MAX_TTL_MINUTES, minutes))


def _optional_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _ensure_default_settings(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        defaults = AppSettings().to_json()
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(defaults, handle, indent=2)
        return defaults
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unable to read settings from %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(path: str = DEFAULT_SETTINGS_PATH) -> AppSettings:
    data = _ensure_default_settings(path)
    defaults = AppSettings()
    dashboard = data.get("dashboard", {})
    if not isinstance(dashboard, Mapping):
        dashboard = {}
    return AppSettings(
        backend_url=str(data.get("backend_url") or defaults.backend_url).rstrip("/"),
        request_timeout_seconds=_optional_float(data.get("request_timeout_seconds")),
        health_ttl_minutes=_clamp_ttl(data.get("health_ttl_minutes"), defaults.health_ttl_minutes),
        health_failure_ttl_minutes=_clamp_ttl(
            data.get("health_failure_ttl_minutes"), defaults.health_failure_ttl_minutes
        ),
        sheet_names_ttl_minutes=_clamp_ttl(
            data.get("sheet_names_ttl_minutes"), defaults.sheet_names_ttl_minutes
        ),
        log_level=str(data.get("log_level") or defaults.log_level).upper(),
        dashboard=DashboardSource(
            connection_id=str(dashboard.get("connection_id") or ""),
            database_id=str(dashboard.get("database_id") or ""),
            table_id=str(dashboard.get("table_id") or ""),
        ),
    )


def save_settings(settings: AppSettings, path: str = DEFAULT_SETTINGS_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)
    logger.info("Settings saved to %s", path)


__all__ = [
    "AppSettings",
    "DEFAULT_BACKEND_URL",
    "DEFAULT_SETTINGS_PATH",
    "DashboardSource",
    "load_settings",
    "save_settings",
]
