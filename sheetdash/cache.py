"""Time based caches used to avoid redundant network and store calls.

Two flavours are provided:

* :class:`SessionCache` keeps values in memory for the lifetime of the
  process.  Each entry carries its own time-to-live and expiry is checked
  lazily whenever the entry is read.  Nothing is swept in the background.
* :class:`PersistentCache` serialises ``{"data", "timestamp"}`` envelopes to a
  JSON file below the application cache directory.  The maximum age is
  supplied by the reader, so two callers may interpret the same entry with
  different freshness requirements.  A corrupt or half written file never
  raises; it simply behaves as a cache miss.

Both classes accept a ``clock`` callable returning seconds since the epoch so
tests can move time forward without sleeping.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from . import app_paths

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

DEFAULT_SESSION_TTL_MINUTES = 30
DEFAULT_PERSISTENT_MAX_AGE_MINUTES = 60

CACHE_KEYS: Mapping[str, str] = {
    "CONNECTION_STATUS": "sheetdash_connection_status",
    "SHEET_METADATA": "sheetdash_sheet_metadata",
    "LAST_VERIFIED": "sheetdash_last_verified",
    "BACKEND_STATUS": "sheetdash_backend_status",
}


@dataclass(slots=True)
class _Entry:
    value: Any
    stored_at: float
    ttl_seconds: float


class SessionCache:
    """In-memory key/value cache with per-entry expiry."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl_minutes: float = DEFAULT_SESSION_TTL_MINUTES) -> None:
        with self._lock:
            self._entries[key] = _Entry(value, self._clock(), float(ttl_minutes) * 60.0)

    def get(self, key: str) -> Any:
        """Return the cached value or ``None`` when missing or expired."""

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > entry.ttl_seconds:
                del self._entries[key]
                logger.debug("Session cache entry %s expired", key)
                return None
            return entry.value

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._clock() - entry.stored_at > entry.ttl_seconds:
                del self._entries[key]
                return False
            return True

    def clear(self, key: Optional[str] = None) -> None:
        """Remove ``key`` or, when omitted, every entry."""

        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def clear_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


class PersistentCache:
    """JSON file backed cache tolerant of malformed content."""

    def __init__(self, path: Optional[Path] = None, clock: Clock = time.time) -> None:
        self._path = Path(path) if path is not None else app_paths.cache_path("persistent_cache.json")
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def set(self, key: str, data: Any) -> None:
        with self._lock:
            store = self._read()
            store[key] = {"data": data, "timestamp": self._clock()}
            self._write(store)

    def get(self, key: str, max_age_minutes: float = DEFAULT_PERSISTENT_MAX_AGE_MINUTES) -> Any:
        """Return the stored data when younger than ``max_age_minutes``."""

        with self._lock:
            store = self._read()
            envelope = store.get(key)
            if not isinstance(envelope, dict):
                return None
            timestamp = envelope.get("timestamp")
            if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
                logger.debug("Ignoring malformed persistent cache entry %s", key)
                return None
            if self._clock() - float(timestamp) > float(max_age_minutes) * 60.0:
                del store[key]
                self._write(store)
                return None
            return envelope.get("data")

    def remove(self, key: str) -> None:
        with self._lock:
            store = self._read()
            if store.pop(key, None) is not None:
                self._write(store)

    def clear(self) -> None:
        """Remove every well-known entry from :data:`CACHE_KEYS`."""

        with self._lock:
            store = self._read()
            for key in CACHE_KEYS.values():
                store.pop(key, None)
            self._write(store)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._read())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _read(self) -> Dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Unable to read cache file %s: %s", self._path, exc)
            return {}
        except UnicodeDecodeError:
            logger.warning("Cache file %s is not UTF-8; treating it as empty", self._path)
            return {}
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Cache file %s is malformed; treating it as empty", self._path)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write(self, store: Mapping[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(store, ensure_ascii=False, default=str), encoding="utf-8")
        except OSError as exc:
            logger.warning("Unable to write cache file %s: %s", self._path, exc)


session_cache = SessionCache()


def clear_all_caches(
    session: Optional[SessionCache] = None,
    persistent: Optional[PersistentCache] = None,
) -> None:
    """Clear the session cache and the well-known persistent entries."""

    (session or session_cache).clear()
    if persistent is not None:
        persistent.clear()
    logger.info("Caches cleared")


def cache_status(
    session: Optional[SessionCache] = None,
    persistent: Optional[PersistentCache] = None,
) -> Dict[str, Any]:
    status: Dict[str, Any] = {"session_entries": (session or session_cache).size()}
    if persistent is not None:
        status["persistent_entries"] = persistent.keys()
    return status


__all__ = [
    "CACHE_KEYS",
    "Clock",
    "PersistentCache",
    "SessionCache",
    "cache_status",
    "clear_all_caches",
    "session_cache",
]
