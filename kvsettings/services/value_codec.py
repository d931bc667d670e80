"""Value codec for settings rows.

Composite values are stored in the PHP ``serialize()`` text format so that
rows stay readable by (and writable from) applications sharing the table.
Scalars are stored as plain text, cast the way PHP casts them to string
(``True`` -> ``"1"``, ``False`` -> ``""``), and reload as strings. On read,
``is_encoded`` decides from the shape of the string alone whether a row holds
serialize text or a plain value; ``decode`` only parses strings it accepts.

Format summary (lengths are UTF-8 byte counts)::

    N;  b:1;  i:42;  d:0.5;  s:5:"hello";
    a:<count>:{<key><value>...}
    O:<len>:"<Class>":<count>:{<s:prop><value>...}
    E:<len>:"<Class>:<Case>";
"""
from __future__ import annotations

import dataclasses
import enum
import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Pattern

from kvsettings.core.errors import CorruptValueError, UnsupportedValueTypeError

ENCODED_NULL = "N;"

# Characters removed by PHP trim()
_TRIM_CHARS = " \t\n\r\0\x0b"
# Deepest composite nesting accepted in either direction
MAX_DEPTH = 128

_LENGTH_PREFIX: dict[str, Pattern[str]] = {
    tag: re.compile(rf"{tag}:[0-9]+:", re.DOTALL) for tag in "aOE"
}
_NUMERIC: dict[str, Pattern[str]] = {
    tag: re.compile(rf"{tag}:[0-9.E+-]+;") for tag in "bid"
}
_INT_TEXT: Pattern[str] = re.compile(r"[+-]?[0-9]+")
_FLOAT_TEXT: Pattern[str] = re.compile(r"[0-9.E+-]+")
_SPECIAL_FLOATS = {"INF": math.inf, "-INF": -math.inf, "NAN": math.nan}


@dataclass
class PhpObject:
    """Object whose class is not registered with the codec."""

    class_name: str
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PhpEnum:
    """Enum case whose class is not registered with the codec."""

    class_name: str
    case: str


def is_encoded(raw: Any, strict: bool = True) -> bool:
    """Return True if ``raw`` has the shape of serialize text.

    Strict mode requires the whole string to be a single complete value.
    Non-strict mode accepts strings that merely start like one, which is
    useful for spotting truncated values.
    """
    if not isinstance(raw, str):
        return False
    data = raw.strip(_TRIM_CHARS)
    if data == ENCODED_NULL:
        return True
    if len(data) < 4 or data[1] != ":":
        return False

    if strict:
        if data[-1] not in ";}":
            return False
    else:
        semicolon = data.find(";")
        brace = data.find("}")
        if semicolon == -1 and brace == -1:
            return False
        if semicolon != -1 and semicolon < 3:
            return False
        if brace != -1 and brace < 4:
            return False

    token = data[0]
    if token == "s":
        if strict:
            return data[-2] == '"'
        return '"' in data
    if token in _LENGTH_PREFIX:
        return _LENGTH_PREFIX[token].match(data) is not None
    if token in _NUMERIC:
        pattern = _NUMERIC[token]
        if strict:
            return pattern.fullmatch(data) is not None
        return pattern.match(data) is not None
    return False


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NAN"
    if math.isinf(value):
        return "INF" if value > 0 else "-INF"
    # repr gives the shortest round-tripping form; the exponent marker is upper case
    return repr(value).upper()


def _serialize_str(value: str) -> str:
    return f's:{len(value.encode("utf-8"))}:"{value}";'


def _serialize_key(key: Any) -> str:
    if isinstance(key, bool) or not isinstance(key, (int, str)):
        raise UnsupportedValueTypeError(
            f"Unsupported mapping key type: {type(key).__name__}",
            remediation="Use str or int keys in settings mappings.",
        )
    if isinstance(key, int):
        return f"i:{int(key)};"
    return _serialize_str(key)


class ValueCodec:
    """Encode settings values for storage and decode stored strings.

    ``allowed_classes`` lists dataclasses and Enum types that ``decode`` may
    instantiate. Objects and enum cases of other classes decode to
    ``PhpObject`` / ``PhpEnum`` placeholders.
    """

    is_encoded = staticmethod(is_encoded)

    def __init__(self, allowed_classes: Iterable[type] = ()) -> None:
        self._classes: dict[str, type] = {}
        for cls in allowed_classes:
            if not (dataclasses.is_dataclass(cls) or issubclass(cls, enum.Enum)):
                raise TypeError(f"{cls.__name__} is neither a dataclass nor an Enum")
            self._classes[cls.__name__] = cls

    def encode(self, value: Any) -> str:
        if value is None:
            return ENCODED_NULL
        if isinstance(value, enum.Enum):
            return self._serialize(value, [])
        if isinstance(value, bool):
            return "1" if value else ""
        if isinstance(value, (int, float, str)):
            return str(value)
        return self._serialize(value, [])

    def decode(self, raw: str) -> Any:
        if not is_encoded(raw):
            return raw
        return _Parser(raw.strip(_TRIM_CHARS).encode("utf-8"), self._classes).parse()

    def _serialize(self, value: Any, path: list[int]) -> str:
        if value is None:
            return ENCODED_NULL
        if isinstance(value, enum.Enum):
            return self._serialize_enum(type(value).__name__, value.name)
        if isinstance(value, PhpEnum):
            return self._serialize_enum(value.class_name, value.case)
        if isinstance(value, bool):
            return f"b:{int(value)};"
        if isinstance(value, int):
            return f"i:{value};"
        if isinstance(value, float):
            return f"d:{_format_float(value)};"
        if isinstance(value, str):
            return _serialize_str(value)
        if isinstance(value, (list, tuple, dict, PhpObject)) or (
            dataclasses.is_dataclass(value) and not isinstance(value, type)
        ):
            return self._serialize_composite(value, path)
        raise UnsupportedValueTypeError(
            f"Unsupported setting value type: {type(value).__name__}",
            remediation="Store scalars, lists, dicts, dataclasses or Enum members.",
        )

    def _serialize_composite(self, value: Any, path: list[int]) -> str:
        # path holds the ids of the containers currently being written
        if id(value) in path:
            raise UnsupportedValueTypeError(
                f"Cyclic {type(value).__name__} value cannot be encoded",
                remediation="Remove self-references from the setting value.",
            )
        if len(path) >= MAX_DEPTH:
            raise UnsupportedValueTypeError(
                f"Value nests deeper than {MAX_DEPTH} levels",
                remediation="Flatten the setting value.",
            )
        path.append(id(value))
        try:
            if isinstance(value, (list, tuple)):
                return self._serialize_array(list(enumerate(value)), path)
            if isinstance(value, dict):
                return self._serialize_array(list(value.items()), path)
            if isinstance(value, PhpObject):
                return self._serialize_object(value.class_name, value.properties, path)
            props = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
            return self._serialize_object(type(value).__name__, props, path)
        finally:
            path.pop()

    def _serialize_array(self, items: list[tuple[Any, Any]], path: list[int]) -> str:
        body = "".join(_serialize_key(k) + self._serialize(v, path) for k, v in items)
        return f"a:{len(items)}:{{{body}}}"

    def _serialize_object(self, class_name: str, props: dict[str, Any], path: list[int]) -> str:
        body = "".join(
            _serialize_str(str(k)) + self._serialize(v, path) for k, v in props.items()
        )
        name_len = len(class_name.encode("utf-8"))
        return f'O:{name_len}:"{class_name}":{len(props)}:{{{body}}}'

    @staticmethod
    def _serialize_enum(class_name: str, case: str) -> str:
        text = f"{class_name}:{case}"
        return f'E:{len(text.encode("utf-8"))}:"{text}";'


class _Parser:
    """Recursive-descent reader over the UTF-8 bytes of a serialize string."""

    def __init__(self, data: bytes, classes: dict[str, type]) -> None:
        self._data = data
        self._pos = 0
        self._depth = 0
        self._classes = classes

    def parse(self) -> Any:
        value = self._value()
        if self._pos != len(self._data):
            raise self._error("trailing data after value")
        return value

    def _error(self, reason: str) -> CorruptValueError:
        return CorruptValueError(
            f"Malformed encoded value at offset {self._pos}: {reason}",
            remediation="Rewrite the setting; the stored row is damaged.",
        )

    def _expect(self, token: bytes) -> None:
        end = self._pos + len(token)
        if self._data[self._pos:end] != token:
            raise self._error(f"expected {token.decode('ascii')!r}")
        self._pos = end

    def _read_until(self, terminator: bytes) -> str:
        end = self._data.find(terminator, self._pos)
        if end == -1:
            raise self._error(f"missing {terminator.decode('ascii')!r}")
        chunk = self._data[self._pos:end]
        self._pos = end + len(terminator)
        return chunk.decode("latin-1")

    def _read_int(self, terminator: bytes) -> int:
        text = self._read_until(terminator)
        if not _INT_TEXT.fullmatch(text):
            raise self._error(f"invalid integer {text!r}")
        return int(text)

    def _read_length(self) -> int:
        length = self._read_int(b":")
        if length < 0:
            raise self._error("negative length")
        return length

    def _read_float(self) -> float:
        text = self._read_until(b";")
        if text in _SPECIAL_FLOATS:
            return _SPECIAL_FLOATS[text]
        if not _FLOAT_TEXT.fullmatch(text):
            raise self._error(f"invalid float {text!r}")
        try:
            return float(text)
        except ValueError as exc:
            raise self._error(f"invalid float {text!r}") from exc

    def _read_quoted(self, length: int) -> str:
        self._expect(b'"')
        end = self._pos + length
        if end > len(self._data):
            raise self._error("string length exceeds data")
        raw = self._data[self._pos:end]
        self._pos = end
        self._expect(b'"')
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise self._error("string is not valid UTF-8") from exc

    def _value(self) -> Any:
        if self._pos >= len(self._data):
            raise self._error("unexpected end of data")
        tag = self._data[self._pos:self._pos + 1]
        self._pos += 1

        if tag == b"N":
            self._expect(b";")
            return None
        self._expect(b":")

        if tag == b"b":
            text = self._read_until(b";")
            if text not in ("0", "1"):
                raise self._error(f"invalid boolean {text!r}")
            return text == "1"
        if tag == b"i":
            return self._read_int(b";")
        if tag == b"d":
            return self._read_float()
        if tag == b"s":
            value = self._read_quoted(self._read_length())
            self._expect(b";")
            return value
        if tag == b"a":
            count = self._read_length()
            self._expect(b"{")
            self._enter()
            items = [(self._key(), self._value()) for _ in range(count)]
            self._depth -= 1
            self._expect(b"}")
            return _array_to_python(items)
        if tag == b"O":
            class_name = self._read_quoted(self._read_length())
            self._expect(b":")
            count = self._read_length()
            self._expect(b"{")
            self._enter()
            props = {str(self._key()): self._value() for _ in range(count)}
            self._depth -= 1
            self._expect(b"}")
            return self._build_object(class_name, props)
        if tag == b"E":
            text = self._read_quoted(self._read_length())
            self._expect(b";")
            class_name, sep, case = text.partition(":")
            if not sep or not class_name or not case:
                raise self._error(f"invalid enum reference {text!r}")
            return self._build_enum(class_name, case)
        raise self._error(f"unknown type tag {tag!r}")

    def _enter(self) -> None:
        self._depth += 1
        if self._depth > MAX_DEPTH:
            raise self._error(f"nesting deeper than {MAX_DEPTH} levels")

    def _key(self) -> Any:
        start = self._pos
        key = self._value()
        if isinstance(key, bool) or not isinstance(key, (int, str)):
            self._pos = start
            raise self._error("array keys must be integers or strings")
        return key

    def _build_object(self, class_name: str, props: dict[str, Any]) -> Any:
        cls: Optional[type] = self._classes.get(class_name)
        if cls is None or not dataclasses.is_dataclass(cls):
            return PhpObject(class_name, props)
        # fields declared with init=False are restored after construction
        late = {f.name for f in dataclasses.fields(cls) if not f.init}
        try:
            obj = cls(**{k: v for k, v in props.items() if k not in late})
        except TypeError as exc:
            raise self._error(f"properties do not match {class_name}: {exc}") from exc
        for name in late:
            if name in props:
                object.__setattr__(obj, name, props[name])
        return obj

    def _build_enum(self, class_name: str, case: str) -> Any:
        cls = self._classes.get(class_name)
        if cls is None or not issubclass(cls, enum.Enum):
            return PhpEnum(class_name, case)
        try:
            return cls[case]
        except KeyError as exc:
            raise self._error(f"{class_name} has no case {case!r}") from exc


def _array_to_python(items: list[tuple[Any, Any]]) -> Any:
    keys = [k for k, _ in items]
    if keys == list(range(len(items))):
        return [v for _, v in items]
    return dict(items)


__all__ = ["ENCODED_NULL", "MAX_DEPTH", "PhpEnum", "PhpObject", "ValueCodec", "is_encoded"]
