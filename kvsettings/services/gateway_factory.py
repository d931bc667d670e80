"""Build a DatabaseGateway from configuration.

Environment variables (all optional):
- KVSETTINGS_BACKEND: 'sqlite' (default) or 'odbc'
- KVSETTINGS_SQLITE_PATH: database file, defaults to ./settings.sqlite
- KVSETTINGS_ODBC_CONNECTION_STRING: full ODBC connection string
- KVSETTINGS_TIMEOUT_SECONDS: connect/busy timeout, defaults to 30
"""
from __future__ import annotations

import os
from typing import Mapping, Optional

from kvsettings.services.database_gateway import DatabaseGateway, GatewayConfig, ValidationError
from kvsettings.services.db_adapters.odbc_adapter import OdbcAdapter
from kvsettings.services.db_adapters.sqlite_adapter import SqliteAdapter

_ENV_PREFIX = "KVSETTINGS_"
_DEFAULT_SQLITE_PATH = "settings.sqlite"
_BACKENDS = {"sqlite": SqliteAdapter, "odbc": OdbcAdapter}


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    env = os.environ if environ is None else environ
    backend = (env.get(f"{_ENV_PREFIX}BACKEND") or "sqlite").strip().lower()

    raw_timeout = env.get(f"{_ENV_PREFIX}TIMEOUT_SECONDS")
    timeout = 30
    if raw_timeout:
        try:
            timeout = int(raw_timeout)
        except ValueError:
            raise ValidationError(
                f"{_ENV_PREFIX}TIMEOUT_SECONDS must be an integer, got {raw_timeout!r}"
            ) from None

    if backend == "sqlite":
        return GatewayConfig(
            backend="sqlite",
            sqlite_path=env.get(f"{_ENV_PREFIX}SQLITE_PATH") or _DEFAULT_SQLITE_PATH,
            timeout_seconds=timeout,
        )
    return GatewayConfig(
        backend=backend,
        connection_string=env.get(f"{_ENV_PREFIX}ODBC_CONNECTION_STRING"),
        timeout_seconds=timeout,
    )


def open_gateway(cfg: GatewayConfig) -> DatabaseGateway:
    """Create and initialize the adapter matching cfg.backend."""
    try:
        adapter_cls = _BACKENDS[cfg.backend]
    except KeyError:
        raise ValidationError(f"Unknown gateway backend: {cfg.backend!r}") from None
    gateway = adapter_cls()
    gateway.init(cfg)
    return gateway
