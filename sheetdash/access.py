"""Role based gating of dashboard cards."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from .dashboard import resolve_field
from .models import Region, SyncedRow
from .repository import Repository

logger = logging.getLogger(__name__)

ALL_CARDS: Sequence[str] = (
    "ConnectionStatus",
    "StatsOverview",
    "RevenueChart",
    "PerformanceIndicators",
    "TurnoverActivityCard",
    "BookingStatusActivityCard",
    "BookingTypesActivityCard",
)

BASIC_CARDS: Sequence[str] = ("ConnectionStatus", "StatsOverview")

ROLE_DEFAULT_CARDS: Mapping[str, Sequence[str]] = {
    "admin": ("ConnectionStatus", "StatsOverview", "RevenueChart", "PerformanceIndicators"),
    "branch manager": ("ConnectionStatus", "StatsOverview", "RevenueChart"),
    "sales officer": ("ConnectionStatus", "StatsOverview", "RevenueChart"),
    "artist manager": ("ConnectionStatus", "StatsOverview", "RevenueChart"),
}

NAME_FIELDS: Sequence[str] = ("name", "username", "user_name", "full_name", "email")
ROLE_FIELDS: Sequence[str] = ("role", "user_type", "position", "job_title")
CARD_FIELDS: Sequence[str] = ("cards", "access_cards", "permissions", "access_level")


@dataclass
class User:
    name: str
    role: str = ""
    cards: List[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.role.strip().lower() == "admin"


def parse_cards(value: Optional[str]) -> List[str]:
    """Split a comma separated card list, dropping blanks and duplicates."""

    cards: List[str] = []
    for part in (value or "").split(","):
        card = part.strip()
        if card and card not in cards:
            cards.append(card)
    return cards


def default_cards_for_role(role: str) -> List[str]:
    return list(ROLE_DEFAULT_CARDS.get(role.strip().lower(), BASIC_CARDS))


def allowed_cards(user: User) -> List[str]:
    """Return the cards ``user`` may see, in display order."""

    if user.is_admin:
        return list(ALL_CARDS)
    if user.cards:
        return [card for card in user.cards if card in ALL_CARDS]
    return default_cards_for_role(user.role)


def can_view(user: User, card: str) -> bool:
    return card in allowed_cards(user)


def _first_field(names: Iterable[str], patterns: Sequence[str]) -> Optional[str]:
    candidates = list(names)
    for pattern in patterns:
        match = resolve_field(candidates, pattern)
        if match is not None:
            return match
    return None


def users_from_rows(rows: Sequence[SyncedRow | Mapping[str, str]]) -> List[User]:
    """Build :class:`User` records from synced rows of a users sheet."""

    records = [row.fields if isinstance(row, SyncedRow) else row for row in rows]
    names = {name for record in records for name in record}
    name_field = _first_field(names, NAME_FIELDS)
    role_field = _first_field(names, ROLE_FIELDS)
    card_field = _first_field(names, CARD_FIELDS)
    if name_field is None:
        logger.warning("Users table has no recognisable name column")
        return []

    users: List[User] = []
    for record in records:
        name = str(record.get(name_field) or "").strip()
        if not name:
            continue
        users.append(
            User(
                name=name,
                role=str(record.get(role_field) or "").strip() if role_field else "",
                cards=parse_cards(record.get(card_field)) if card_field else [],
            )
        )
    return users


def find_user(users: Iterable[User], name: str) -> Optional[User]:
    wanted = name.strip().lower()
    for user in users:
        if user.name.lower() == wanted:
            return user
    return None


def find_users_table(
    repository: Repository, regions: Iterable[Region] = tuple(Region)
) -> Optional[Tuple[str, str, str]]:
    """Return ``(connection_id, database_id, table_id)`` of the first users table."""

    for region in regions:
        for connection in repository.load_connections(region):
            for database in repository.load_databases(connection.id):
                for table in repository.load_tables(connection.id, database.id):
                    label = f"{table.name} {table.sheet_name}".lower()
                    if "user" in label:
                        return connection.id, database.id, table.id
    return None


def load_users(repository: Repository, regions: Iterable[Region] = tuple(Region)) -> List[User]:
    location = find_users_table(repository, regions)
    if location is None:
        logger.info("No users table registered")
        return []
    return users_from_rows(repository.load_synced_rows(*location))


__all__ = [
    "ALL_CARDS",
    "BASIC_CARDS",
    "ROLE_DEFAULT_CARDS",
    "User",
    "allowed_cards",
    "can_view",
    "default_cards_for_role",
    "find_user",
    "find_users_table",
    "load_users",
    "parse_cards",
    "users_from_rows",
]
