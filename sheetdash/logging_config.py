"""Logging setup shared by the CLI and tests."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from . import app_paths

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_NAME = "sheetdash.log"

# Third-party loggers that report every discovery document and HTTP call.
NOISY_LOGGERS = ("googleapiclient.discovery", "googleapiclient.discovery_cache", "urllib3")

_LOG_PATH: Optional[Path] = None


def _has_file_handler(root: logging.Logger, log_path: Path) -> bool:
    target = str(log_path.resolve())
    return any(
        isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == target
        for handler in root.handlers
    )


def _has_console_handler(root: logging.Logger) -> bool:
    return any(
        type(handler) is logging.StreamHandler and getattr(handler, "stream", None) is sys.stderr
        for handler in root.handlers
    )


def configure_logging(
    level: int = logging.INFO,
    path: Optional[Path] = None,
    *,
    console: bool = False,
) -> Path:
    """Send log records to the SheetDash log file.

    Parameters
    ----------
    level:
        Minimum level for the root logger. At ``INFO`` the file records
        strategy fallbacks and sync outcomes; ``DEBUG`` adds cache hits and
        state transitions.
    path:
        Log file location. Defaults to ``sheetdash.log`` in the application
        log directory.
    console:
        Also echo records to standard error.

    Calling this again with the same file does not add a second handler.
    """

    global _LOG_PATH

    log_path = Path(path) if path is not None else app_paths.log_path(LOG_FILE_NAME)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level if not root.handlers else min(root.level or level, level))
    formatter = logging.Formatter(LOG_FORMAT)

    if not _has_file_handler(root, log_path):
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if console and not _has_console_handler(root):
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _LOG_PATH = log_path
    root.debug("Logging to %s", log_path)
    return log_path


def get_log_path() -> Path:
    """Return the active log file, configuring logging on first use."""

    return _LOG_PATH if _LOG_PATH is not None else configure_logging()


__all__ = ["LOG_FORMAT", "configure_logging", "get_log_path"]
