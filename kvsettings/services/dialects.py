from __future__ import annotations

import enum
import re
from typing import Pattern

from kvsettings.core.errors import InvalidIdentifierError, UnsupportedDialectError

_IDENTIFIER: Pattern[str] = re.compile(r"[A-Za-z0-9_]+")


class Dialect(enum.Enum):
    MYSQL = "mysql"
    POSTGRES = "postgres"
    SQLITE = "sqlite"


# Lower-cased driver identities (DB-API module names, ODBC SQL_DBMS_NAME values)
_DRIVER_ALIASES: dict[str, Dialect] = {
    "mysql": Dialect.MYSQL,
    "mariadb": Dialect.MYSQL,
    "pgsql": Dialect.POSTGRES,
    "postgres": Dialect.POSTGRES,
    "postgresql": Dialect.POSTGRES,
    "sqlite": Dialect.SQLITE,
    "sqlite3": Dialect.SQLITE,
}

_UPSERT_TEMPLATES: dict[Dialect, str] = {
    Dialect.MYSQL: (
        "INSERT INTO {table} (name, value) VALUES (?, ?) "
        "ON DUPLICATE KEY UPDATE value = VALUES(value)"
    ),
    Dialect.POSTGRES: (
        "INSERT INTO {table} (name, value) VALUES (?, ?) "
        "ON CONFLICT (name) DO UPDATE SET value = EXCLUDED.value"
    ),
    Dialect.SQLITE: (
        "INSERT INTO {table} (name, value) VALUES (?, ?) "
        "ON CONFLICT(name) DO UPDATE SET value = excluded.value"
    ),
}


def resolve_dialect(driver_identity: str | None) -> Dialect:
    """Map a driver identity to a supported dialect or raise UnsupportedDialectError."""
    key = (driver_identity or "").strip().lower()
    try:
        return _DRIVER_ALIASES[key]
    except KeyError:
        raise UnsupportedDialectError(
            f"Unsupported database driver: {driver_identity!r}",
            remediation="Use a MySQL/MariaDB, PostgreSQL or SQLite connection.",
        ) from None


def validate_identifier(identifier: str) -> str:
    if not isinstance(identifier, str) or not _IDENTIFIER.fullmatch(identifier):
        raise InvalidIdentifierError(
            f"Invalid identifier provided: {identifier!r}",
            remediation="Table names may only contain letters, digits and underscores.",
        )
    return identifier


def quote_identifier(identifier: str, driver_identity: str | None) -> str:
    """Validate and quote a bare identifier.

    MySQL-family drivers get backticks; every other driver gets ANSI double
    quotes. Unknown drivers are not rejected here so that reads keep working.
    """
    validate_identifier(identifier)
    if _DRIVER_ALIASES.get((driver_identity or "").strip().lower()) is Dialect.MYSQL:
        return f"`{identifier}`"
    return f'"{identifier}"'


def select_all_sql(table: str, driver_identity: str | None) -> str:
    return f"SELECT name, value FROM {quote_identifier(table, driver_identity)}"


def upsert_sql(dialect: Dialect, table: str) -> str:
    quoted = quote_identifier(table, dialect.value)
    return _UPSERT_TEMPLATES[dialect].format(table=quoted)


__all__ = [
    "Dialect",
    "quote_identifier",
    "resolve_dialect",
    "select_all_sql",
    "upsert_sql",
    "validate_identifier",
]
