from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Optional

from kvsettings.core.errors import CorruptValueError, SettingsLoadError
from kvsettings.services.database_gateway import DatabaseError, DatabaseGateway
from kvsettings.services.dialects import (
    Dialect,
    resolve_dialect,
    select_all_sql,
    upsert_sql,
    validate_identifier,
)
from kvsettings.services.value_codec import ValueCodec, is_encoded

logger = logging.getLogger(__name__)

_MISSING = object()


class SettingsStore:
    """Key-value settings cached in memory and persisted to a (name, value) table.

    All rows are read once on construction; reads are served from the cache and
    every ``set`` upserts a single row. The gateway is borrowed: the store never
    closes it.

    Settings are also reachable as attributes (``store.site_name``); names that
    collide with methods, or start with an underscore, are not.
    """

    def __init__(
        self,
        gateway: DatabaseGateway,
        table: str = "settings",
        *,
        codec: Optional[ValueCodec] = None,
    ) -> None:
        self._gateway = gateway
        self._table = validate_identifier(table)
        self._codec = codec or ValueCodec()
        self._settings: dict[str, Any] = {}
        self._dialect: Optional[Dialect] = None
        self._upsert: Optional[str] = None
        self._lock = threading.RLock()
        self._load()

    @property
    def table(self) -> str:
        return self._table

    def _load(self) -> None:
        try:
            rows = self._fetch_raw_rows()
        except DatabaseError as exc:
            raise SettingsLoadError(
                f"Could not read settings table {self._table!r}: {exc}",
                remediation="Check that the table exists and the connection is usable.",
            ) from exc

        for name, raw in rows:
            try:
                self._settings[str(name)] = self._codec.decode(raw)
            except CorruptValueError as exc:
                raise SettingsLoadError(
                    f"Setting {name!r} in {self._table!r} holds a corrupt encoded value",
                    remediation=exc.remediation,
                ) from exc
        logger.info("Loaded %d settings from %s", len(self._settings), self._table)

    def _fetch_raw_rows(self) -> list[tuple]:
        sql = select_all_sql(self._table, self._gateway.driver_identity())
        return self._gateway.query_all(sql)

    def get(self, name: str, default: Any = None) -> Any:
        return self._settings.get(name, default)

    def get_all(self) -> dict[str, Any]:
        """Return a deep copy of every cached setting."""
        with self._lock:
            return copy.deepcopy(self._settings)

    def set(self, name: str, value: Any) -> None:
        """Cache and persist a setting.

        The cache is updated first. If encoding, dialect resolution or the
        upsert fails, the previous cached value is restored and the error is
        re-raised, so the cache only ever diverges from the table while a
        write is in flight.
        """
        if not isinstance(name, str) or not name:
            raise ValueError("Setting name must be a non-empty string")

        with self._lock:
            previous = self._settings.get(name, _MISSING)
            self._settings[name] = value
            try:
                encoded = self._codec.encode(value)
                self._gateway.execute(self._upsert_statement(), (name, encoded))
            except Exception:
                if previous is _MISSING:
                    del self._settings[name]
                else:
                    self._settings[name] = previous
                logger.warning("Write of setting %r to %s failed; cache restored", name, self._table)
                raise
        logger.debug("Stored setting %r in %s", name, self._table)

    def _upsert_statement(self) -> str:
        if self._upsert is None:
            self._dialect = resolve_dialect(self._gateway.driver_identity())
            self._upsert = upsert_sql(self._dialect, self._table)
        return self._upsert

    def audit(self) -> list[str]:
        """Names of rows that start like encoded values but are not complete ones.

        Such rows load as plain strings; they usually mean a serialized value
        was cut short by a column limit or a partial write.
        """
        rows = self._fetch_raw_rows()
        return sorted(
            str(name)
            for name, raw in rows
            if is_encoded(raw, strict=False) and not is_encoded(raw)
        )

    def __getattr__(self, name: str) -> Any:
        # Only called when normal lookup fails
        if name.startswith("_"):
            raise AttributeError(name)
        return self.get(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        elif hasattr(type(self), name):
            # the attribute would shadow the setting on read
            raise AttributeError(f"{name!r} is a {type(self).__name__} attribute; use set({name!r}, ...)")
        else:
            self.set(name, value)
