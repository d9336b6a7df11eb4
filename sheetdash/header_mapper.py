"""Build and maintain the column mappings of a registered table.

Variable names are derived from the four names that locate a column
(connection, database, table and header) so that every synced field is
globally unique and predictable.  Mappings are edited in place by the
helpers below; persisting them is the caller's job.
"""
from __future__ import annotations

import logging
import re
import uuid
from typing import Iterable, List, Optional, Sequence

from .models import DataType, HeaderMapping

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^a-z0-9]")
_REPEATED_UNDERSCORE = re.compile(r"_+")


class HeaderMappingError(ValueError):
    """Raised when a mapping edit would leave the table in an invalid state."""


class SyncPreconditionError(HeaderMappingError):
    """Raised when a table's mappings cannot be used for a sync."""


# ------------------------------------------------------------------
# Naming
# ------------------------------------------------------------------
def clean(value: str) -> str:
    """Return ``value`` lower-cased with unsafe characters folded to ``_``."""

    lowered = (value or "").lower()
    return _REPEATED_UNDERSCORE.sub("_", _UNSAFE.sub("_", lowered))


def generate_variable_name(connection: str, database: str, table: str, header: str) -> str:
    return "_".join(clean(part) for part in (connection, database, table, header))


def _header_id(index: int) -> str:
    return f"header_{index}_{uuid.uuid4().hex[:8]}"


# ------------------------------------------------------------------
# Bulk generation and refresh
# ------------------------------------------------------------------
def generate_mappings(
    headers: Sequence[str],
    connection_name: str,
    database_name: str,
    table_name: str,
) -> List[HeaderMapping]:
    """Create one enabled text mapping per header, in column order."""

    return [
        HeaderMapping(
            id=_header_id(index),
            column_index=index,
            original_header=header,
            variable_name=generate_variable_name(connection_name, database_name, table_name, header),
            data_type=DataType.TEXT,
            is_enabled=True,
            is_key=False,
        )
        for index, header in enumerate(headers)
    ]


def merge_mappings(existing: Sequence[HeaderMapping], fresh: Sequence[HeaderMapping]) -> List[HeaderMapping]:
    """Fold freshly probed mappings into ``existing``.

    A fresh mapping matches an existing one with the same column index or the
    same original header text.  Matches keep every user customisation and only
    take the new header text.  Unmatched fresh mappings are appended and
    existing mappings that no longer have a column are kept as they are.
    """

    merged = list(existing)
    claimed: set[int] = set()
    for candidate in fresh:
        match_position = _find_match(merged, candidate, claimed)
        if match_position is None:
            merged.append(candidate)
            claimed.add(len(merged) - 1)
            continue
        claimed.add(match_position)
        merged[match_position].original_header = candidate.original_header
    merged.sort(key=lambda mapping: mapping.column_index)
    return merged


def _find_match(
    mappings: Sequence[HeaderMapping], candidate: HeaderMapping, claimed: set[int]
) -> Optional[int]:
    for position, mapping in enumerate(mappings):
        if position in claimed:
            continue
        if mapping.column_index == candidate.column_index:
            return position
    for position, mapping in enumerate(mappings):
        if position in claimed:
            continue
        if mapping.original_header == candidate.original_header:
            return position
    return None


# ------------------------------------------------------------------
# Editing
# ------------------------------------------------------------------
def _require(mappings: Iterable[HeaderMapping], header_id: str) -> HeaderMapping:
    for mapping in mappings:
        if mapping.id == header_id:
            return mapping
    raise HeaderMappingError(f"Header {header_id!r} does not exist in this table.")


def set_key(mappings: Sequence[HeaderMapping], header_id: str) -> HeaderMapping:
    """Make ``header_id`` the only key mapping and force-enable it."""

    chosen = _require(mappings, header_id)
    for mapping in mappings:
        mapping.is_key = mapping is chosen
    chosen.is_enabled = True
    return chosen


def set_enabled(mappings: Sequence[HeaderMapping], header_id: str, enabled: bool) -> HeaderMapping:
    mapping = _require(mappings, header_id)
    if not enabled and mapping.is_key:
        raise HeaderMappingError(
            f"'{mapping.original_header}' is the key column and cannot be disabled."
        )
    mapping.is_enabled = enabled
    return mapping


def set_data_type(mappings: Sequence[HeaderMapping], header_id: str, data_type: DataType) -> HeaderMapping:
    mapping = _require(mappings, header_id)
    mapping.data_type = data_type
    return mapping


def rename_header(
    mappings: Sequence[HeaderMapping],
    header_id: str,
    new_header: str,
    connection_name: str,
    database_name: str,
    table_name: str,
) -> HeaderMapping:
    """Change the header text and regenerate the variable name."""

    if not new_header.strip():
        raise HeaderMappingError("Header text cannot be empty.")
    mapping = _require(mappings, header_id)
    mapping.original_header = new_header
    mapping.variable_name = generate_variable_name(
        connection_name, database_name, table_name, new_header
    )
    return mapping


def add_mapping(
    mappings: List[HeaderMapping],
    connection_name: str,
    database_name: str,
    table_name: str,
    header: Optional[str] = None,
) -> HeaderMapping:
    """Append a manually defined column after the last known one."""

    next_index = max((mapping.column_index for mapping in mappings), default=-1) + 1
    text = header if header and header.strip() else f"Column {next_index + 1}"
    mapping = HeaderMapping(
        id=_header_id(next_index),
        column_index=next_index,
        original_header=text,
        variable_name=generate_variable_name(connection_name, database_name, table_name, text),
    )
    mappings.append(mapping)
    return mapping


def remove_mapping(mappings: List[HeaderMapping], header_id: str) -> HeaderMapping:
    mapping = _require(mappings, header_id)
    mappings.remove(mapping)
    return mapping


# ------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------
def enabled_mappings(mappings: Iterable[HeaderMapping]) -> List[HeaderMapping]:
    return [mapping for mapping in mappings if mapping.is_enabled]


def key_mapping(mappings: Iterable[HeaderMapping]) -> Optional[HeaderMapping]:
    keys = [mapping for mapping in mappings if mapping.is_key]
    return keys[0] if len(keys) == 1 else None


def validate_for_sync(mappings: Sequence[HeaderMapping]) -> HeaderMapping:
    """Return the key mapping or raise :class:`SyncPreconditionError`."""

    if not enabled_mappings(mappings):
        raise SyncPreconditionError("No enabled headers found. Enable at least one header before syncing.")
    keys = [mapping for mapping in mappings if mapping.is_key]
    if not keys:
        raise SyncPreconditionError("No key header selected. Choose a key column before syncing.")
    if len(keys) > 1:
        names = ", ".join(mapping.original_header for mapping in keys)
        raise SyncPreconditionError(f"Only one key header is allowed, found {len(keys)}: {names}.")
    if not keys[0].is_enabled:
        raise SyncPreconditionError(
            f"Key header '{keys[0].original_header}' is disabled. Enable it before syncing."
        )
    return keys[0]


__all__ = [
    "HeaderMappingError",
    "SyncPreconditionError",
    "add_mapping",
    "clean",
    "enabled_mappings",
    "generate_mappings",
    "generate_variable_name",
    "key_mapping",
    "merge_mappings",
    "remove_mapping",
    "rename_header",
    "set_data_type",
    "set_enabled",
    "set_key",
    "validate_for_sync",
]
