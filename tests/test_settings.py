from __future__ import annotations

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import settings


def test_load_settings_creates_defaults(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"

    loaded = settings.load_settings(str(path))

    assert path.exists()
    assert loaded.health_ttl_minutes == 5
    assert loaded.sheet_names_ttl_minutes == 30
    assert loaded.dashboard.is_configured() is False


def test_load_settings_clamps_and_normalises(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "backend_url": "http://proxy.local:3001/",
                "request_timeout_seconds": "-1",
                "health_ttl_minutes": 0,
                "sheet_names_ttl_minutes": 99999,
                "health_failure_ttl_minutes": "soon",
                "log_level": "debug",
                "dashboard": {"connection_id": "c1", "database_id": "d1", "table_id": "t1"},
            }
        ),
        encoding="utf-8",
    )

    loaded = settings.load_settings(str(path))

    assert loaded.backend_url == "http://proxy.local:3001"
    assert loaded.request_timeout_seconds is None
    assert loaded.health_ttl_minutes == settings.MIN_TTL_MINUTES
    assert loaded.sheet_names_ttl_minutes == settings.MAX_TTL_MINUTES
    assert loaded.health_failure_ttl_minutes == 1
    assert loaded.log_level == "DEBUG"
    assert loaded.dashboard.is_configured() is True


def test_corrupt_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    loaded = settings.load_settings(str(path))

    assert loaded.backend_url == settings.AppSettings().backend_url


def test_save_settings_round_trip(tmp_path: Path) -> None:
    path = str(tmp_path / "settings.json")
    current = settings.AppSettings(request_timeout_seconds=12.5)
    current.dashboard = settings.DashboardSource("c1", "d1", "t1")

    settings.save_settings(current, path)

    assert settings.load_settings(path) == current
