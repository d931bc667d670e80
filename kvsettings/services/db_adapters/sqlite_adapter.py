from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional, Sequence

from kvsettings.services.database_gateway import (
    DatabaseGateway,
    GatewayConfig,
    map_sqlite_exception,
    DatabaseError,
)

logger = logging.getLogger(__name__)


class SqliteAdapter(DatabaseGateway):
    """SQLite implementation of DatabaseGateway.

    - Opens one long-lived connection on init(), in autocommit mode
    - Enables PRAGMAs: foreign_keys=ON, journal_mode=WAL, synchronous=NORMAL
    """

    def __init__(self) -> None:
        super().__init__()
        self._backend = "sqlite"
        self._conn: Optional[sqlite3.Connection] = None

    def _ensure_conn(self) -> sqlite3.Connection:
        if not self._conn:
            raise DatabaseError("SQLite adapter not initialized")
        return self._conn

    def init(self, cfg: GatewayConfig) -> None:
        if cfg.backend != "sqlite":
            raise DatabaseError("SqliteAdapter requires backend='sqlite'")
        if not cfg.sqlite_path:
            raise DatabaseError("sqlite_path is required for SqliteAdapter")

        try:
            conn = sqlite3.connect(
                cfg.sqlite_path,
                timeout=float(cfg.timeout_seconds),
                isolation_level=None,  # autocommit: every upsert is its own transaction
                check_same_thread=False,
            )
            conn.row_factory = None
            conn.execute("PRAGMA foreign_keys=ON")
            # journal_mode returns a row; in-memory databases report 'memory'
            conn.execute("PRAGMA journal_mode=WAL").fetchone()
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA busy_timeout=5000")
        except sqlite3.Error as exc:
            raise map_sqlite_exception(exc) from exc

        self._conn = conn
        logger.info("SQLite gateway ready: %s", cfg.sqlite_path)

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                logger.warning("Failed to close SQLite connection", exc_info=True)
            finally:
                self._conn = None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        conn = self._ensure_conn()
        try:
            cur = conn.execute(sql, tuple(params))
        except sqlite3.Error as exc:
            raise map_sqlite_exception(exc) from exc
        return cur.rowcount if cur.rowcount is not None and cur.rowcount >= 0 else 0

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        conn = self._ensure_conn()
        try:
            rows = conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise map_sqlite_exception(exc) from exc
        return [tuple(r) for r in rows]

    def driver_identity(self) -> str:
        return "sqlite"
