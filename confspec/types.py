from __future__ import annotations

import enum
import re
import typing
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Type

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


class ValueType(ABC):
    """Base class for semantic type tags."""

    name: str = "value"

    @abstractmethod
    def coerce(self, raw: Any) -> Any:
        raise NotImplementedError

    @abstractmethod
    def json_schema(self) -> Dict[str, Any]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self) -> int:
        return hash((type(self), self.name))


class StringType(ValueType):
    name = "string"

    def coerce(self, raw: Any) -> str:
        if isinstance(raw, str):
            return raw
        if isinstance(raw, bool):
            return "true" if raw else "false"
        if isinstance(raw, (int, float)):
            return str(raw)
        raise ValueError(f"expected a scalar, got {type(raw).__name__}")

    def json_schema(self) -> Dict[str, Any]:
        return {"type": "string"}


class IntType(ValueType):
    """Integer with overflow detection against ``[min_value, max_value]``."""

    def __init__(self, min_value: int = INT64_MIN, max_value: int = INT64_MAX):
        self.min_value = min_value
        self.max_value = max_value
        self.name = "int"

    def coerce(self, raw: Any) -> int:
        if isinstance(raw, bool):
            raise ValueError("booleans are not integers")
        if isinstance(raw, int):
            value = raw
        elif isinstance(raw, float):
            if not raw.is_integer():
                raise ValueError("not an integral number")
            value = int(raw)
        elif isinstance(raw, str):
            text = raw.strip()
            if not _INT_PATTERN.fullmatch(text):
                raise ValueError("not an integer literal")
            value = int(text)
        else:
            raise ValueError(f"expected an integer, got {type(raw).__name__}")

        if not self.min_value <= value <= self.max_value:
            raise ValueError(
                f"out of range [{self.min_value}, {self.max_value}]"
            )
        return value

    def json_schema(self) -> Dict[str, Any]:
        return {"type": "integer"}


class FloatType(ValueType):
    name = "float"

    def coerce(self, raw: Any) -> float:
        if isinstance(raw, bool):
            raise ValueError("booleans are not numbers")
        if isinstance(raw, (int, float)):
            return float(raw)
        if isinstance(raw, str):
            try:
                return float(raw.strip())
            except ValueError:
                raise ValueError("not a number literal") from None
        raise ValueError(f"expected a number, got {type(raw).__name__}")

    def json_schema(self) -> Dict[str, Any]:
        return {"type": "number"}


class BoolType(ValueType):
    name = "bool"

    def coerce(self, raw: Any) -> bool:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered == "true":
                return True
            if lowered == "false":
                return False
            raise ValueError("expected 'true' or 'false'")
        raise ValueError(f"expected a boolean, got {type(raw).__name__}")

    def json_schema(self) -> Dict[str, Any]:
        return {"type": "boolean"}


_ISO_DURATION = re.compile(
    r"(?P<sign>[+-])?P"
    r"(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T"
    r"(?:(?P<hours>\d+(?:\.\d+)?)H)?"
    r"(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?"
    r")?",
    re.IGNORECASE,
)

_UNIT_DURATION = re.compile(r"(?P<number>[+-]?\d+(?:\.\d+)?)\s*(?P<unit>[a-z]*)")

# case-sensitive on purpose, "M" is not "m"
_DURATION_UNITS = {
    "": "milliseconds",
    "ms": "milliseconds",
    "millis": "milliseconds",
    "milliseconds": "milliseconds",
    "us": "microseconds",
    "micros": "microseconds",
    "microseconds": "microseconds",
    "ns": "nanoseconds",
    "nanos": "nanoseconds",
    "nanoseconds": "nanoseconds",
    "d": "days",
    "days": "days",
    "h": "hours",
    "hours": "hours",
    "s": "seconds",
    "seconds": "seconds",
    "m": "minutes",
    "minutes": "minutes",
}


def parse_duration(text: str) -> timedelta:
    """
    Parse a duration written either in ISO-8601 (``PT15M``, ``P2DT3H4M``) or
    with a unit suffix (``200ms``, ``10s``, ``5 minutes``, ``1d``).

    A bare number is read as milliseconds.
    """
    s = text.strip()
    match = _ISO_DURATION.fullmatch(s)
    if match and any(match.group(g) for g in ("days", "hours", "minutes", "seconds")):
        parts = {
            key: float(value)
            for key, value in match.groupdict().items()
            if key != "sign" and value
        }
        result = _timedelta(**parts)
        return -result if match.group("sign") == "-" else result

    match = _UNIT_DURATION.fullmatch(s)
    if not match:
        raise ValueError(f"cannot parse duration '{text}'")
    unit = match.group("unit")
    if len(unit) > 2 and not unit.endswith("s"):
        unit += "s"
    if unit not in _DURATION_UNITS:
        raise ValueError(
            f"unknown time unit '{match.group('unit')}' (try ns, us, ms, s, m, h, d)"
        )
    unit = _DURATION_UNITS[unit]
    number = float(match.group("number"))
    if unit == "nanoseconds":
        unit, number = "microseconds", number / 1000
    return _timedelta(**{unit: number})


def _timedelta(**parts: float) -> timedelta:
    try:
        return timedelta(**parts)
    except OverflowError:
        raise ValueError(f"duration out of range (max {timedelta.max})") from None


class DurationType(ValueType):
    name = "duration"

    def coerce(self, raw: Any) -> timedelta:
        if isinstance(raw, timedelta):
            return raw
        if isinstance(raw, bool):
            raise ValueError("booleans are not durations")
        if isinstance(raw, (int, float)):
            return _timedelta(milliseconds=raw)
        if isinstance(raw, str):
            return parse_duration(raw)
        raise ValueError(f"expected a duration, got {type(raw).__name__}")

    def json_schema(self) -> Dict[str, Any]:
        return {"type": ["string", "number"]}


_SIZE = re.compile(r"(?P<number>[+-]?\d+(?:\.\d+)?)\s*(?P<unit>[a-zA-Z]*)")


def _size_units() -> Dict[str, int]:
    units = {"": 1, "B": 1, "b": 1, "byte": 1, "bytes": 1}
    prefixes = ["kilo", "mega", "giga", "tera", "peta", "exa", "zetta", "yotta"]
    binary = ["kibi", "mebi", "gibi", "tebi", "pebi", "exbi", "zebi", "yobi"]
    for power, (si, iec) in enumerate(zip(prefixes, binary), start=1):
        letter = si[0].upper()
        for name in (f"{letter}B", f"{si}byte", f"{si}bytes"):
            units[name] = 1000**power
        for name in (letter, f"{letter}i", f"{letter}iB", f"{iec}byte", f"{iec}bytes"):
            units[name] = 1024**power
        units[letter.lower()] = 1024**power
    # "kB" is the SI spelling, "KB" is not accepted
    units["kB"] = units.pop("KB")
    return units


_SIZE_UNITS = _size_units()


def parse_size(text: str) -> int:
    """
    Parse a size in bytes such as ``512``, ``1k``, ``1.5kB`` or ``10 MiB``.

    Single letters and ``Ki``/``KiB`` forms are powers of 1024, ``kB``/``MB``
    forms powers of 1000.
    """
    match = _SIZE.fullmatch(text.strip())
    if not match:
        raise ValueError(f"cannot parse size '{text}'")
    unit = match.group("unit")
    if unit not in _SIZE_UNITS:
        raise ValueError(f"unknown size unit '{unit}' (try B, k, kB, KiB, M, MB, MiB, G, ...)")
    return _check_size(int(Decimal(match.group("number")) * _SIZE_UNITS[unit]))


def _check_size(value: int) -> int:
    if value < 0:
        raise ValueError("size must not be negative")
    if value > INT64_MAX:
        raise ValueError(f"size out of range (max {INT64_MAX} bytes)")
    return value


class SizeType(ValueType):
    """Size in bytes, returned as a non-negative ``int``."""

    name = "size"

    def coerce(self, raw: Any) -> int:
        if isinstance(raw, bool):
            raise ValueError("booleans are not sizes")
        if isinstance(raw, int):
            return _check_size(raw)
        if isinstance(raw, float):
            if not raw.is_integer():
                raise ValueError("not a whole number of bytes")
            return _check_size(int(raw))
        if isinstance(raw, str):
            return parse_size(raw)
        raise ValueError(f"expected a size, got {type(raw).__name__}")

    def json_schema(self) -> Dict[str, Any]:
        return {"type": ["string", "integer"]}


class EnumType(ValueType):
    """Members of an :class:`enum.Enum`, matched by name first, then by value."""

    def __init__(self, enum_cls: Type[enum.Enum]):
        self.enum_cls = enum_cls
        self.name = enum_cls.__name__

    def coerce(self, raw: Any) -> enum.Enum:
        if isinstance(raw, self.enum_cls):
            return raw
        if isinstance(raw, str) and raw.strip() in self.enum_cls.__members__:
            return self.enum_cls[raw.strip()]
        try:
            return self.enum_cls(raw)
        except ValueError:
            names = ", ".join(self.enum_cls.__members__)
            raise ValueError(f"expected one of {names}") from None

    def json_schema(self) -> Dict[str, Any]:
        return {"enum": list(self.enum_cls.__members__)}


class ListType(ValueType):
    """Homogeneous list; strings are split on commas."""

    def __init__(self, item_type: ValueType):
        self.item_type = item_type
        self.name = f"list[{item_type.name}]"

    def coerce(self, raw: Any) -> List[Any]:
        if isinstance(raw, str):
            raw = [part.strip() for part in raw.split(",")] if raw.strip() else []
        if not isinstance(raw, (list, tuple)):
            raise ValueError(f"expected a list, got {type(raw).__name__}")
        result = []
        for index, element in enumerate(raw):
            try:
                result.append(self.item_type.coerce(element))
            except ValueError as exc:
                raise ValueError(f"element {index}: {exc}") from None
        return result

    def json_schema(self) -> Dict[str, Any]:
        return {"type": "array", "items": self.item_type.json_schema()}


class MapType(ValueType):
    """String-keyed mapping with homogeneous values."""

    def __init__(self, value_type: ValueType):
        self.value_type = value_type
        self.name = f"map[{value_type.name}]"

    def coerce(self, raw: Any) -> Dict[str, Any]:
        if not isinstance(raw, Mapping):
            raise ValueError(f"expected a mapping, got {type(raw).__name__}")
        result = {}
        for key, value in raw.items():
            try:
                result[str(key)] = self.value_type.coerce(value)
            except ValueError as exc:
                raise ValueError(f"key '{key}': {exc}") from None
        return result

    def json_schema(self) -> Dict[str, Any]:
        return {"type": "object", "additionalProperties": self.value_type.json_schema()}


STRING = StringType()
INT = IntType()
FLOAT = FloatType()
BOOL = BoolType()
DURATION = DurationType()
SIZE = SizeType()

_BUILTIN_TYPES = {
    str: STRING,
    int: INT,
    float: FLOAT,
    bool: BOOL,
    timedelta: DURATION,
}


def type_of(annotation: Any) -> ValueType:
    """
    Return the :class:`ValueType` for a Python annotation.

    Accepts ValueType instances as they are, the builtin scalars, ``timedelta``,
    Enum subclasses, ``list[T]``, ``tuple[T, ...]`` and ``dict[str, T]``.
    """
    if isinstance(annotation, ValueType):
        return annotation
    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)
    if origin in (list, tuple) and args:
        return ListType(type_of(args[0]))
    if origin is dict and len(args) == 2:
        if args[0] is not str:
            raise TypeError(f"only string keys are supported, got {args[0]!r}")
        return MapType(type_of(args[1]))
    if origin is not None:
        raise TypeError(f"unsupported configuration type: {annotation!r}")

    if annotation in _BUILTIN_TYPES:
        return _BUILTIN_TYPES[annotation]
    if isinstance(annotation, type) and issubclass(annotation, enum.Enum):
        return EnumType(annotation)
    raise TypeError(f"unsupported configuration type: {annotation!r}")


def infer_type(value: Any) -> ValueType:
    """Guess the :class:`ValueType` of a default value."""
    if isinstance(value, bool):
        return BOOL
    if isinstance(value, enum.Enum):
        return EnumType(type(value))
    for python_type in (int, float, str, timedelta):
        if isinstance(value, python_type):
            return _BUILTIN_TYPES[python_type]
    if isinstance(value, (list, tuple)):
        if not value:
            raise TypeError("cannot infer the element type of an empty list")
        return ListType(infer_type(value[0]))
    if isinstance(value, Mapping):
        if not value:
            raise TypeError("cannot infer the value type of an empty mapping")
        return MapType(infer_type(next(iter(value.values()))))
    raise TypeError(f"cannot infer a configuration type for {value!r}")
