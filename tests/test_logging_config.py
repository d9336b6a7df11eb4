from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetdash import logging_config


@pytest.fixture
def clean_root():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in saved_handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(saved_level)


def test_configure_logging_writes_to_file_once(tmp_path: Path, clean_root: logging.Logger) -> None:
    log_path = tmp_path / "logs" / "sheetdash.log"

    first = logging_config.configure_logging(logging.INFO, log_path)
    second = logging_config.configure_logging(logging.INFO, log_path)
    logging.getLogger("sheetdash.test").info("sync finished")
    for handler in clean_root.handlers:
        handler.flush()

    assert first == second == log_path
    file_handlers = [h for h in clean_root.handlers if isinstance(h, logging.FileHandler)]
    assert [h.baseFilename for h in file_handlers].count(str(log_path.resolve())) == 1
    assert "[INFO] sheetdash.test: sync finished" in log_path.read_text(encoding="utf-8")
    assert logging_config.get_log_path() == log_path


def test_console_output_is_optional(tmp_path: Path, clean_root: logging.Logger) -> None:
    logging_config.configure_logging(logging.DEBUG, tmp_path / "a.log", console=True)
    logging_config.configure_logging(logging.DEBUG, tmp_path / "a.log", console=True)

    consoles = [h for h in clean_root.handlers if type(h) is logging.StreamHandler and h.stream is sys.stderr]
    assert len(consoles) == 1
    assert logging.getLogger("googleapiclient.discovery").level == logging.WARNING
