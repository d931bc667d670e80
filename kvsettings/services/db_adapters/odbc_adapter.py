from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Optional, Sequence, Tuple

from kvsettings.lib.redaction import redact_connection_string
from kvsettings.services.database_gateway import (
    DatabaseGateway,
    GatewayConfig,
    DatabaseError,
    TransientError,
    ValidationError,
    map_odbc_error,
)

logger = logging.getLogger(__name__)

_SQLSTATE_PAT = re.compile(r"^[0-9A-Z]{5}$")
_NATIVE_CODE_PAT = re.compile(r"\((-?\d+)\)")


def _extract_odbc_error_info(exc: BaseException) -> Tuple[str, Optional[int], Optional[str]]:
    """Pull (message, native code, SQLSTATE) out of a pyodbc-style exception.

    pyodbc.Error.args is usually ("42S02", "[42S02] [MySQL][ODBC 8.0 Driver]... (1146)").
    """
    args = getattr(exc, "args", None) or ()
    sqlstate: Optional[str] = None
    code: Optional[int] = None
    parts: list[str] = []
    for a in args:
        if isinstance(a, int) and not isinstance(a, bool):
            code = a
        elif isinstance(a, str):
            if sqlstate is None and _SQLSTATE_PAT.match(a):
                sqlstate = a
            else:
                parts.append(a)
    msg = " ".join(parts) or str(exc)
    if code is None:
        match = _NATIVE_CODE_PAT.search(msg)
        if match:
            code = int(match.group(1))
    return msg, code, sqlstate


class OdbcAdapter(DatabaseGateway):
    """pyodbc implementation of DatabaseGateway.

    - Per-operation autocommit connections (the driver manager pools them)
    - Retries transient failures with exponential backoff
    - driver_identity() reports the DBMS name from the driver (SQL_DBMS_NAME)
    """

    def __init__(self) -> None:
        super().__init__()
        self._backend = "odbc"
        self._cfg: Optional[GatewayConfig] = None
        self._dbms_name: Optional[str] = None

    def init(self, cfg: GatewayConfig) -> None:
        if cfg.backend != "odbc":
            raise ValidationError("OdbcAdapter requires backend='odbc'")
        if not cfg.connection_string:
            raise ValidationError("connection_string is required for OdbcAdapter")
        self._cfg = cfg
        logger.info("ODBC gateway configured: %s", redact_connection_string(cfg.connection_string))

    def close(self) -> None:
        # connections are per operation; only the cached identity outlives them
        self._dbms_name = None

    def _connect(self) -> Any:
        if not self._cfg or not self._cfg.connection_string:
            raise DatabaseError("ODBC adapter not initialized")
        try:
            import pyodbc  # type: ignore
        except ImportError as exc:
            raise DatabaseError(f"pyodbc not available: {exc}") from exc
        timeout = max(1, int(self._cfg.timeout_seconds or 30))
        return pyodbc.connect(self._cfg.connection_string, autocommit=True, timeout=timeout)

    def _with_retry(self, func: Callable[[], Any], *, attempts: int = 3) -> Any:
        delay = 0.5
        for i in range(attempts):
            try:
                return func()
            except DatabaseError:
                raise
            except Exception as exc:
                msg, code, sqlstate = _extract_odbc_error_info(exc)
                derr = map_odbc_error(msg, code, sqlstate)
                if isinstance(derr, TransientError) and i < attempts - 1:
                    logger.warning("Transient ODBC failure (attempt %d/%d): %s", i + 1, attempts, derr)
                    time.sleep(delay)
                    delay *= 2
                    continue
                raise derr from exc
        raise DatabaseError("Retry loop exhausted without a result")

    def _run(self, func: Callable[[Any], Any]) -> Any:
        """Run func(cursor) on a short-lived connection, retrying transient failures."""

        def op() -> Any:
            conn = self._connect()
            try:
                cur = conn.cursor()
                try:
                    return func(cur)
                finally:
                    cur.close()
            finally:
                conn.close()

        return self._with_retry(op)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        def op(cur: Any) -> int:
            cur.execute(sql, tuple(params))
            rc = cur.rowcount
            return int(rc) if rc is not None and rc >= 0 else 0

        return self._run(op)

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        def op(cur: Any) -> list[tuple]:
            cur.execute(sql, tuple(params))
            return [tuple(r) for r in cur.fetchall()]

        return self._run(op)

    def driver_identity(self) -> str:
        if self._dbms_name is None:
            def op() -> str:
                import pyodbc  # type: ignore

                conn = self._connect()
                try:
                    return str(conn.getinfo(pyodbc.SQL_DBMS_NAME))
                finally:
                    conn.close()

            self._dbms_name = self._with_retry(op)
            logger.info("ODBC backend reports DBMS %r", self._dbms_name)
        return self._dbms_name
