from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import pytest

from kvsettings.services.database_gateway import DatabaseGateway, GatewayConfig
from kvsettings.services.db_adapters.sqlite_adapter import SqliteAdapter

SETTINGS_DDL = "CREATE TABLE {table} (name TEXT PRIMARY KEY, value TEXT NOT NULL)"


class RecordingGateway(DatabaseGateway):
    """In-memory gateway that records every statement and reports a fixed driver."""

    def __init__(self, identity: str = "sqlite", rows: Optional[list[tuple]] = None) -> None:
        super().__init__()
        self._backend = "recording"
        self.identity = identity
        self.rows = list(rows or [])
        self.calls: list[tuple[str, str, tuple]] = []
        self.identity_lookups = 0
        self.execute_error: Optional[Exception] = None

    def init(self, cfg: GatewayConfig) -> None:
        pass

    def close(self) -> None:
        pass

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        self.calls.append(("execute", sql, tuple(params)))
        if self.execute_error is not None:
            raise self.execute_error
        return 1

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        self.calls.append(("query_all", sql, tuple(params)))
        return list(self.rows)

    def driver_identity(self) -> str:
        self.identity_lookups += 1
        return self.identity

    def executed(self) -> list[tuple[str, tuple]]:
        return [(sql, params) for op, sql, params in self.calls if op == "execute"]


@pytest.fixture()
def sqlite_gateway(tmp_path: Path) -> Iterator[SqliteAdapter]:
    gateway = SqliteAdapter()
    gateway.init(GatewayConfig(backend="sqlite", sqlite_path=str(tmp_path / "settings.sqlite")))
    gateway.execute(SETTINGS_DDL.format(table="settings"))
    yield gateway
    gateway.close()


@pytest.fixture()
def recording_gateway() -> type[RecordingGateway]:
    return RecordingGateway
