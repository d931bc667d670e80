from __future__ import annotations

import abc
import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Optional, Sequence


# Unified error taxonomy (adapters raise these, never driver exceptions)
class DatabaseError(Exception):
    """Base class for all storage errors surfaced to the settings layer."""


class TransientError(DatabaseError):
    """Retryable, typically lock contention, deadlocks or dropped links."""


class AuthError(DatabaseError):
    """Authentication failures (SQLSTATE class 28)."""


class PermissionError(DatabaseError):  # type: ignore[override]
    """Authorization/permission denied (not Python's built-in)."""


class NotFoundError(DatabaseError):
    """Missing database/table/column."""


class ConflictError(DatabaseError):
    """Constraint violations (unique/foreign key/not null)."""


class TimeoutError(DatabaseError):  # type: ignore[override]
    """Operation timed out."""


class ValidationError(DatabaseError):
    """Bad configuration or input that violates expectations (non-transient)."""


class ProgrammingError(DatabaseError):
    """Programming/SQL mistakes (bad SQL, wrong params)."""


class OperationalError(DatabaseError):
    """Operational problems not otherwise classified."""


_SQLITE_NOT_FOUND_PAT = re.compile(r"no such (?:table|column|index):", re.IGNORECASE)
_SQLITE_LOCKED_PAT = re.compile(r"database is (?:locked|busy)", re.IGNORECASE)
_NOT_FOUND_PAT = re.compile(
    r"doesn't exist|does not exist|invalid object name|no such table", re.IGNORECASE
)
_TRANSIENT_SQLSTATES = {"40001", "40P01", "08S01", "08006", "08003"}
# MySQL lock wait timeout / deadlock
_TRANSIENT_NATIVE_CODES = {1205, 1213}


def map_sqlite_exception(exc: BaseException) -> DatabaseError:
    if isinstance(exc, DatabaseError):
        return exc
    if isinstance(exc, sqlite3.IntegrityError):
        return ConflictError(str(exc))
    if isinstance(exc, sqlite3.OperationalError):
        msg = str(exc)
        if _SQLITE_NOT_FOUND_PAT.search(msg):
            return NotFoundError(msg)
        if _SQLITE_LOCKED_PAT.search(msg):
            return TransientError(msg)
        return OperationalError(msg)
    if isinstance(exc, sqlite3.ProgrammingError):
        return ProgrammingError(str(exc))
    if isinstance(exc, sqlite3.DatabaseError):
        return OperationalError(str(exc))
    return DatabaseError(str(exc))


def map_odbc_error(
    message: str, code: Optional[int] = None, sqlstate: Optional[str] = None
) -> DatabaseError:
    """Best-effort mapping for pyodbc-style errors without importing pyodbc.

    Args:
        message: Full error text as reported by the driver manager.
        code: Native error number if available (e.g. MySQL 1213).
        sqlstate: Five-character SQLSTATE (e.g. '28000', '42S02').
    """
    msg = message or ""
    low = msg.lower()
    state = (sqlstate or "").upper()

    if state.startswith("28") or "access denied for user" in low or "login failed" in low:
        return AuthError(msg)
    if state in ("HYT00", "HYT01") or "timeout" in low or "timed out" in low:
        return TimeoutError(msg)
    if state in _TRANSIENT_SQLSTATES or (code is not None and code in _TRANSIENT_NATIVE_CODES):
        return TransientError(msg)
    if state in ("42S02", "42P01") or _NOT_FOUND_PAT.search(msg):
        return NotFoundError(msg)
    if "permission denied" in low or "command denied" in low:
        return PermissionError(msg)
    if state.startswith("23"):
        return ConflictError(msg)
    if state.startswith("42") or state.startswith("07"):
        return ProgrammingError(msg)
    return OperationalError(msg)


@dataclass(frozen=True)
class GatewayConfig:
    backend: str  # 'sqlite' | 'odbc'
    # SQLite
    sqlite_path: Optional[str] = None
    # ODBC (MySQL/MariaDB, PostgreSQL, any driver pyodbc can reach)
    connection_string: Optional[str] = None
    timeout_seconds: int = 30


class DatabaseGateway(abc.ABC):
    """Database access facade consumed by the settings store."""

    def __init__(self) -> None:
        self._backend = "unknown"

    @property
    def backend(self) -> str:
        return self._backend

    @abc.abstractmethod
    def init(self, cfg: GatewayConfig) -> None:
        """Initialize and prepare the gateway for use."""

    @abc.abstractmethod
    def close(self) -> None:
        """Dispose resources."""

    @abc.abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a statement and return affected row count."""

    @abc.abstractmethod
    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        """Run a SELECT and return all rows as tuples."""

    @abc.abstractmethod
    def driver_identity(self) -> str:
        """Name of the database engine behind this gateway (e.g. 'sqlite', 'MySQL')."""
