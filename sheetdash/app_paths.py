"""Locations of SheetDash's settings, store, cache and log files.

Everything lives below one application directory:

* ``$SHEETDASH_DATA_DIR`` when set;
* otherwise ``%LOCALAPPDATA%\\SheetDash`` (or ``%APPDATA%``) on Windows;
* otherwise ``$XDG_DATA_HOME/sheetdash`` or ``~/.sheetdash``.

The directory is resolved on every call so a changed environment takes
effect without reloading the module.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence

APP_NAME = "SheetDash"
DATA_DIR_ENV = "SHEETDASH_DATA_DIR"
CACHE_SUBDIR = "cache"
LOG_SUBDIR = "logs"

_WINDOWS_ENV_VARS: Sequence[str] = ("LOCALAPPDATA", "APPDATA")


def app_dir() -> Path:
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()
    for env_var in _WINDOWS_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser() / APP_NAME
    xdg_home = os.environ.get("XDG_DATA_HOME")
    if xdg_home:
        return Path(xdg_home).expanduser() / APP_NAME.lower()
    return Path.home() / f".{APP_NAME.lower()}"


def ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def data_path(*parts: str) -> Path:
    """Return ``parts`` joined below :func:`app_dir`, creating the parent."""

    target = app_dir().joinpath(*parts)
    ensure_directory(target.parent)
    return target


def cache_path(*parts: str) -> Path:
    return data_path(CACHE_SUBDIR, *parts)


def log_path(*parts: str) -> Path:
    return data_path(LOG_SUBDIR, *parts)


__all__ = [
    "APP_NAME",
    "DATA_DIR_ENV",
    "app_dir",
    "cache_path",
    "data_path",
    "ensure_directory",
    "log_path",
]
