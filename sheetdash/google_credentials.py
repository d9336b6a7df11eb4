"""Helpers for validating Google credentials and spreadsheet identifiers."""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from google.oauth2 import service_account

from .models import Connection, Region

__all__ = [
    "API_KEY_PREFIX",
    "CredentialsInvalidError",
    "DEFAULT_TOKEN_URI",
    "check_service_account",
    "extract_spreadsheet_id",
    "is_valid_spreadsheet_id",
    "service_account_info",
    "validate_api_key",
    "validate_connection",
]

API_KEY_PREFIX = "AIza"
MIN_API_KEY_LENGTH = 30
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

_SPREADSHEET_ID = re.compile(r"^[a-zA-Z0-9_-]{25,}$")
_URL_PATTERNS = (
    re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"/d/([a-zA-Z0-9_-]+)"),
)


class CredentialsInvalidError(ValueError):
    """Raised when connection credentials are missing or malformed."""


def _normalise_private_key(key: str) -> str:
    key = key.replace("\r\n", "\n").replace("\r", "\n")
    key = key.replace("\\n", "\n")
    if not key.endswith("\n"):
        key += "\n"
    return key


def validate_api_key(api_key: str) -> List[str]:
    """Return a list of problems with ``api_key`` (empty when it looks valid)."""

    key = (api_key or "").strip()
    if not key:
        return ["API key is required."]
    problems: List[str] = []
    if not key.startswith(API_KEY_PREFIX):
        problems.append(f"API key should start with '{API_KEY_PREFIX}'.")
    if len(key) < MIN_API_KEY_LENGTH:
        problems.append(f"API key looks too short (expected at least {MIN_API_KEY_LENGTH} characters).")
    return problems


def validate_connection(connection: Connection) -> None:
    """Raise :class:`CredentialsInvalidError` listing every problem found."""

    problems: List[str] = []
    if not connection.name.strip():
        problems.append("Connection name is required.")
    if not isinstance(connection.region, Region):
        problems.append("Region must be one of: " + ", ".join(region.value for region in Region))

    partial_service_account = any(
        value.strip()
        for value in (connection.client_email, connection.private_key, connection.project_id)
    )
    if partial_service_account and not connection.has_service_account():
        missing = [
            label
            for label, value in (
                ("client email", connection.client_email),
                ("private key", connection.private_key),
                ("project id", connection.project_id),
            )
            if not value.strip()
        ]
        problems.append("Service account credentials are incomplete: missing " + ", ".join(missing) + ".")

    if connection.has_api_key():
        problems.extend(validate_api_key(connection.api_key))
    elif not connection.has_service_account():
        problems.append("Provide an API key or service account credentials.")

    if problems:
        raise CredentialsInvalidError(" ".join(problems))


def service_account_info(connection: Connection) -> Dict[str, str]:
    """Return the service account dictionary described by ``connection``."""

    if not connection.has_service_account():
        raise CredentialsInvalidError("Connection has no service account credentials.")
    return {
        "type": "service_account",
        "project_id": connection.project_id.strip(),
        "private_key": _normalise_private_key(connection.private_key.strip()),
        "client_email": connection.client_email.strip(),
        "client_id": connection.client_id.strip(),
        "token_uri": DEFAULT_TOKEN_URI,
    }


def check_service_account(connection: Connection) -> service_account.Credentials:
    """Parse the service account material, raising on malformed keys."""

    info = service_account_info(connection)
    try:
        return service_account.Credentials.from_service_account_info(info)
    except (ValueError, KeyError, TypeError) as exc:
        raise CredentialsInvalidError(f"Service account credentials are invalid: {exc}") from exc


def extract_spreadsheet_id(url_or_id: str) -> Optional[str]:
    """Return the spreadsheet id contained in a sheet URL or bare id."""

    text = (url_or_id or "").strip()
    if not text:
        return None
    for pattern in _URL_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return text if is_valid_spreadsheet_id(text) else None


def is_valid_spreadsheet_id(spreadsheet_id: str) -> bool:
    return bool(_SPREADSHEET_ID.match((spreadsheet_id or "").strip()))
