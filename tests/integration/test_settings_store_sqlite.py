from __future__ import annotations

import enum
from dataclasses import dataclass, field

import pytest

from kvsettings.core.errors import (
    CorruptValueError,
    SettingsLoadError,
    UnsupportedValueTypeError,
)
from kvsettings.services.database_gateway import NotFoundError
from kvsettings.services.settings_store import SettingsStore
from kvsettings.services.value_codec import ValueCodec


@dataclass
class Smtp:
    host: str
    port: int


class Theme(enum.Enum):
    LIGHT = "light"
    DARK = "dark"


@dataclass
class RetryPolicy:
    attempts: int
    failures: int = field(init=False, default=0)


def _raw_rows(gateway) -> list[tuple]:
    return gateway.query_all('SELECT name, value FROM "settings" ORDER BY name')


def test_empty_table_loads_empty_mapping(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    assert store.get_all() == {}
    assert store.table == "settings"


def test_scalar_round_trip_and_reload_caveat(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    store.set("count", 5)
    assert store.get("count") == 5

    # Non-string scalars come back in their string form after a reload
    reloaded = SettingsStore(sqlite_gateway)
    assert reloaded.get("count") == "5"
    assert _raw_rows(sqlite_gateway) == [("count", "5")]


def test_set_and_get_string(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    store.set("site_name", "Solo")
    assert store.get("site_name") == "Solo"
    assert store.site_name == "Solo"
    assert SettingsStore(sqlite_gateway).get("site_name") == "Solo"


def test_composite_round_trip_through_reload(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    store.set("opts", {"a": 1, "b": 2})
    store.set("hosts", ["a.example", "b.example"])
    store.set("nested", {"mail": {"tls": True, "ports": [25, 587]}, "ratio": 0.75})
    assert store.get("opts") == {"a": 1, "b": 2}

    reloaded = SettingsStore(sqlite_gateway)
    assert reloaded.get("opts") == {"a": 1, "b": 2}
    assert reloaded.get("hosts") == ["a.example", "b.example"]
    assert reloaded.get("nested") == {"mail": {"tls": True, "ports": [25, 587]}, "ratio": 0.75}


def test_none_round_trips(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    store.set("maintenance_until", None)
    assert SettingsStore(sqlite_gateway).get("maintenance_until") is None
    assert _raw_rows(sqlite_gateway) == [("maintenance_until", "N;")]


def test_writing_twice_keeps_one_row(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    store.set("x", "first")
    store.set("x", ["second"])
    assert store.get("x") == ["second"]
    assert sqlite_gateway.query_all('SELECT COUNT(*) FROM "settings" WHERE name = ?', ("x",)) == [(1,)]
    assert SettingsStore(sqlite_gateway).get("x") == ["second"]


def test_get_all_returns_every_name_and_is_a_copy(sqlite_gateway):
    sqlite_gateway.execute('INSERT INTO "settings" (name, value) VALUES (?, ?)', ("seeded", "yes"))
    store = SettingsStore(sqlite_gateway)
    store.set("x", "1")
    store.set("opts", {"a": 1})
    store.set("x", "2")

    all_settings = store.get_all()
    assert all_settings == {"seeded": "yes", "x": "2", "opts": {"a": 1}}

    all_settings["x"] = "changed"
    all_settings["opts"]["a"] = 99
    all_settings["new"] = True
    assert store.get("x") == "2"
    assert store.get("opts") == {"a": 1}
    assert store.get("new") is None


def test_missing_names_are_not_errors(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    assert store.get("nope") is None
    assert store.get("nope", "fallback") == "fallback"
    assert store.nope is None


def test_attribute_access_writes_through(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    store.site_name = "Solo"
    store.features = {"beta": False}
    assert store.get("site_name") == "Solo"
    reloaded = SettingsStore(sqlite_gateway)
    assert reloaded.site_name == "Solo"
    assert reloaded.features == {"beta": False}


def test_loads_rows_written_by_other_applications(sqlite_gateway):
    rows = [
        ("legacy_count", "42"),
        ("legacy_text", "hello"),
        ("arr", 'a:1:{s:1:"k";s:1:"v";}'),
        ("list", 'a:2:{i:0;s:1:"x";i:1;s:1:"y";}'),
        ("nothing", "N;"),
        ("tagged", 's:3:"abc";'),
        ("flag", "b:1;"),
    ]
    for row in rows:
        sqlite_gateway.execute('INSERT INTO "settings" (name, value) VALUES (?, ?)', row)

    store = SettingsStore(sqlite_gateway)
    assert store.get_all() == {
        "legacy_count": "42",
        "legacy_text": "hello",
        "arr": {"k": "v"},
        "list": ["x", "y"],
        "nothing": None,
        "tagged": "abc",
        "flag": True,
    }


def test_missing_table_is_a_load_error(sqlite_gateway):
    with pytest.raises(SettingsLoadError) as excinfo:
        SettingsStore(sqlite_gateway, "app_settings")
    assert isinstance(excinfo.value.__cause__, NotFoundError)


def test_corrupt_row_is_a_load_error(sqlite_gateway):
    sqlite_gateway.execute(
        'INSERT INTO "settings" (name, value) VALUES (?, ?)', ("broken", 's:10:"short";')
    )
    with pytest.raises(SettingsLoadError) as excinfo:
        SettingsStore(sqlite_gateway)
    assert isinstance(excinfo.value.__cause__, CorruptValueError)
    assert "broken" in str(excinfo.value)


def test_custom_table_name(sqlite_gateway):
    sqlite_gateway.execute("CREATE TABLE app_settings (name TEXT PRIMARY KEY, value TEXT NOT NULL)")
    store = SettingsStore(sqlite_gateway, "app_settings")
    store.set("k", [1, 2])
    assert SettingsStore(sqlite_gateway, "app_settings").get("k") == [1, 2]
    assert SettingsStore(sqlite_gateway).get("k") is None


def test_unsupported_value_leaves_previous_state(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    store.set("tags", ["a"])
    with pytest.raises(UnsupportedValueTypeError):
        store.set("tags", {"a", "b"})
    with pytest.raises(UnsupportedValueTypeError):
        store.set("fresh", object())

    assert store.get("tags") == ["a"]
    assert "fresh" not in store.get_all()
    assert SettingsStore(sqlite_gateway).get("tags") == ["a"]


def test_empty_name_is_rejected(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    with pytest.raises(ValueError):
        store.set("", "x")


def test_registered_classes_survive_reload(sqlite_gateway):
    codec = ValueCodec(allowed_classes=[Smtp, Theme])
    store = SettingsStore(sqlite_gateway, codec=codec)
    store.set("smtp", Smtp("mail.example", 587))
    store.set("theme", Theme.DARK)

    reloaded = SettingsStore(sqlite_gateway, codec=codec)
    assert reloaded.get("smtp") == Smtp("mail.example", 587)
    assert reloaded.get("theme") is Theme.DARK


def test_audit_reports_truncated_values(sqlite_gateway):
    rows = [
        ("cut", 'a:2:{i:0;s:1:"x";i:1;s:1'),
        ("ok", 'a:1:{i:0;s:1:"x";}'),
        ("plain", "hello"),
        ("trailing", "i:5;junk"),
    ]
    for row in rows:
        sqlite_gateway.execute('INSERT INTO "settings" (name, value) VALUES (?, ?)', row)

    store = SettingsStore(sqlite_gateway)
    assert store.get("cut") == 'a:2:{i:0;s:1:"x";i:1;s:1'
    assert store.audit() == ["cut", "trailing"]


def test_registered_class_with_non_init_field_survives_reload(sqlite_gateway):
    codec = ValueCodec(allowed_classes=[RetryPolicy])
    store = SettingsStore(sqlite_gateway, codec=codec)
    policy = RetryPolicy(3)
    policy.failures = 2
    store.set("retry", policy)

    reloaded = SettingsStore(sqlite_gateway, codec=codec).get("retry")
    assert reloaded.attempts == 3
    assert reloaded.failures == 2


def test_deeply_nested_row_is_a_load_error(sqlite_gateway):
    sqlite_gateway.execute(
        'INSERT INTO "settings" (name, value) VALUES (?, ?)',
        ("deep", "a:1:{i:0;" * 3000 + "N;" + "}" * 3000),
    )
    with pytest.raises(SettingsLoadError) as excinfo:
        SettingsStore(sqlite_gateway)
    assert isinstance(excinfo.value.__cause__, CorruptValueError)


def test_cyclic_value_is_rejected_and_rolled_back(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    loop: list = []
    loop.append(loop)
    with pytest.raises(UnsupportedValueTypeError):
        store.set("loop", loop)
    assert "loop" not in store.get_all()
    assert _raw_rows(sqlite_gateway) == []


def test_attribute_writes_cannot_shadow_store_members(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    with pytest.raises(AttributeError):
        store.table = "other"
    with pytest.raises(AttributeError):
        store.get_all = "x"
    assert store.table == "settings"
    assert _raw_rows(sqlite_gateway) == []

    store.set("table", "kept apart")
    assert store.get("table") == "kept apart"


def test_false_is_stored_as_empty_string(sqlite_gateway):
    store = SettingsStore(sqlite_gateway)
    store.set("enabled", False)
    assert store.get("enabled") is False
    assert SettingsStore(sqlite_gateway).get("enabled") == ""
    assert _raw_rows(sqlite_gateway) == [("enabled", "")]
