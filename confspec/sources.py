from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Iterator

import configparser
import json
import os
import re
import tomllib

import yaml

from .exceptions import ConfigSourceError, SourceNotFoundError, SourceParseError
from .utils import env_key_to_path, flatten_mapping, join_path, split_path


class ConfigSource(ABC):
    """
    Abstract base class for configuration sources.

    A source turns some external representation into a raw value map. Values
    are left untyped; the resolution engine coerces them to the item types.
    `precedence` is an optional rank hint used when the caller does not give
    an explicit rank.
    """

    precedence: int | None = None

    @abstractmethod
    def load(self) -> Mapping[str, Any] | None:
        """Return a mapping with configuration values or None if nothing was loaded."""
        raise NotImplementedError

    @property
    def name(self) -> str:
        return type(self).__name__

    def with_prefix(self, prefix: str) -> "ConfigSource":
        """Return a source whose keys are moved under `prefix`."""
        return PrefixedSource(self, prefix)

    def at(self, path: str) -> "ConfigSource":
        """Return a source restricted to the subtree at `path`."""
        return ScopedSource(self, path)

    def __repr__(self) -> str:
        return f"<{self.name}>"


class DictSource(ConfigSource):
    """Configuration source backed by an in-memory hierarchical dictionary."""

    def __init__(self, data: Mapping[str, Any], *, precedence: int | None = None):
        self._data = dict(data)
        self.precedence = precedence

    def load(self) -> Mapping[str, Any] | None:
        return dict(self._data)


class KVSource(DictSource):
    """
    Configuration source backed by a mapping with dotted keys.

    ``{"server.host": "localhost"}`` binds the item at ``server.host``.
    """


class FlatSource(DictSource):
    """
    Property-style source: dotted keys mapped to string values.

    The literal ``"null"`` stands for a missing (None) value, lists are written
    as comma-separated strings.
    """

    def __init__(self, data: Mapping[str, str], *, precedence: int | None = None):
        for key, value in data.items():
            if not isinstance(value, str):
                raise ConfigSourceError(
                    f"FlatSource value for {key!r} must be a string, got {type(value).__name__}"
                )
        super().__init__(data, precedence=precedence)

    def load(self) -> Mapping[str, Any] | None:
        return {key: _null_literal(value) for key, value in self._data.items()}


class PrefixedSource(ConfigSource):
    """Wrap another source and move all of its keys under a path prefix."""

    def __init__(self, source: ConfigSource, prefix: str):
        self._source = source
        self._prefix = join_path(*split_path(prefix))
        self.precedence = source.precedence

    @property
    def name(self) -> str:
        return f"{self._source.name}(prefix={self._prefix!r})"

    def load(self) -> Mapping[str, Any] | None:
        data = self._source.load()
        if data is None:
            return None
        return flatten_mapping(data, self._prefix)


class ScopedSource(ConfigSource):
    """Wrap another source and expose only the subtree at `path`, re-rooted."""

    def __init__(self, source: ConfigSource, path: str):
        self._source = source
        self._path = join_path(*split_path(path))
        self.precedence = source.precedence

    @property
    def name(self) -> str:
        return f"{self._source.name}[{self._path!r}]"

    def load(self) -> Mapping[str, Any] | None:
        data = self._source.load()
        if data is None:
            return None
        if not self._path:
            return data
        marker = self._path + "."
        return {
            key[len(marker):]: value
            for key, value in flatten_mapping(data).items()
            if key.startswith(marker)
        } or None


class FileSource(ConfigSource):
    """
    Load configuration from a single file.

    Supported formats (by extension):
      - .json
      - .toml
      - .ini, .cfg, .conf (ConfigParser, one level of sections)
      - .yaml, .yml (PyYAML)
      - .properties (``key=value`` lines)

    Values are returned as a nested mapping.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        optional: bool = False,
        precedence: int | None = None,
    ):
        self._path = Path(path).expanduser()
        self._optional = optional
        self.precedence = precedence

    @property
    def path(self) -> Path:
        return self._path

    @property
    def name(self) -> str:
        return f"FileSource({self._path})"

    def load(self) -> Mapping[str, Any] | None:
        if not self._path.exists():
            if self._optional:
                return None
            raise SourceNotFoundError(f"Configuration file not found: {self._path}")

        suffix = self._path.suffix.lower()

        if suffix == ".json":
            return self._load_json()
        if suffix == ".toml":
            return self._load_toml()
        if suffix in {".ini", ".cfg", ".conf"}:
            return self._load_ini()
        if suffix in {".yaml", ".yml"}:
            return self._load_yaml()
        if suffix == ".properties":
            return self._load_properties()

        raise ConfigSourceError(
            f"Unsupported configuration file format: {self._path} "
            f"(extension '{suffix}')"
        )

    def _load_json(self) -> Mapping[str, Any]:
        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise SourceParseError(f"Invalid JSON in {self._path}: {exc}") from exc
        return self._ensure_mapping(data, "JSON")

    def _load_toml(self) -> Mapping[str, Any]:
        try:
            with self._path.open("rb") as f:
                return tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise SourceParseError(f"Invalid TOML in {self._path}: {exc}") from exc

    def _load_ini(self) -> Mapping[str, Any]:
        # Disable interpolation for predictable behavior
        parser = configparser.ConfigParser(interpolation=None)
        parser.optionxform = str  # keep key case, items may be camelCase
        try:
            with self._path.open("r", encoding="utf-8") as f:
                parser.read_file(f)
        except (OSError, configparser.Error) as exc:
            raise SourceParseError(
                f"Error reading INI file {self._path}: {exc}"
            ) from exc

        data: Dict[str, Dict[str, Any]] = {}
        for section in parser.sections():
            data[section] = dict(parser.items(section))
        return data

    def _load_yaml(self) -> Mapping[str, Any]:
        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise SourceParseError(f"Invalid YAML in {self._path}: {exc}") from exc

        if data is None:
            return {}
        return self._ensure_mapping(data, "YAML")

    def _load_properties(self) -> Mapping[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SourceParseError(
                f"Could not read properties file {self._path}: {exc}"
            ) from exc
        try:
            data = _parse_properties(text)
        except ValueError as exc:
            raise SourceParseError(f"Invalid properties in {self._path}: {exc}") from exc
        return {key: _null_literal(value) for key, value in data.items()}

    def _ensure_mapping(self, data: Any, kind: str) -> Mapping[str, Any]:
        if not isinstance(data, Mapping):
            raise SourceParseError(
                f"Top-level {kind} structure in {self._path} must be a mapping."
            )
        return data


class EnvSource(ConfigSource):
    """
    Load configuration from environment variables.

    Keys are derived from variable names with an optional prefix. For example:

      prefix = "MYAPP_"
      MYAPP_DB_HOST=localhost
      MYAPP_DB_PORT=5432

    will be translated to:

      {
        "db.host": "localhost",
        "db.port": "5432"
      }

    Each separator-delimited segment is lowercased and the segments are joined
    with dots. Values stay strings; coercion is left to the resolution engine.
    With ``nested=False`` names are kept verbatim (after stripping the prefix),
    for specs that declare items such as ``SOURCE_TEST_TYPE`` directly.
    """

    def __init__(
        self,
        prefix: str = "",
        *,
        separator: str = "_",
        nested: bool = True,
        environ: Mapping[str, str] | None = None,
        precedence: int | None = None,
    ):
        if not separator:
            raise ValueError("Environment key separator must not be empty.")
        self._prefix = prefix
        self._separator = separator
        self._nested = nested
        self._environ = environ
        self.precedence = precedence

    @property
    def name(self) -> str:
        return f"EnvSource(prefix={self._prefix!r})"

    def load(self) -> Mapping[str, Any] | None:
        environ = os.environ if self._environ is None else self._environ
        result: Dict[str, Any] = {}

        for key, value in environ.items():
            if self._nested:
                path = env_key_to_path(key, self._prefix, self._separator)
            elif key.startswith(self._prefix) and key != self._prefix:
                path = key[len(self._prefix):]
            else:
                path = None
            if path is None:
                continue
            result[path] = value

        return result or None


def _null_literal(raw: str) -> Any:
    return None if raw.strip() == "null" else raw


_PROPERTY_BLANKS = " \t\f"
_PROPERTY_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_PROPERTY_ESCAPE = re.compile(r"\\(u[0-9a-fA-F]{4}|.?)", re.DOTALL)


def _parse_properties(text: str) -> Dict[str, str]:
    """
    Parse Java-style ``.properties`` content.

    Supports ``key=value``, ``key: value`` and ``key value`` lines, ``#`` and
    ``!`` comments, line continuations (an odd number of trailing backslashes)
    and the ``\\t``, ``\\n``, ``\\r``, ``\\f``, ``\\uXXXX`` and ``\\<char>``
    escapes in keys and values.

    :raises ValueError: on a malformed ``\\uXXXX`` escape.
    """
    result: Dict[str, str] = {}
    for line in _logical_lines(text):
        key, value = _split_property(line)
        result[_unescape(key)] = _unescape(value)
    return result


def _logical_lines(text: str) -> Iterator[str]:
    logical = None
    for raw_line in text.splitlines():
        line = raw_line.lstrip(_PROPERTY_BLANKS)
        if logical is None:
            if not line or line[0] in "#!":
                continue
            logical = ""
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2:
            logical += line[:-1]
            continue
        yield logical + line
        logical = None
    if logical is not None:
        yield logical


def _split_property(line: str) -> tuple[str, str]:
    index = 0
    while index < len(line):
        char = line[index]
        if char == "\\":
            index += 2
            continue
        if char in "=:" or char in _PROPERTY_BLANKS:
            break
        index += 1

    key, rest = line[:index], line[index:].lstrip(_PROPERTY_BLANKS)
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(_PROPERTY_BLANKS)
    return key, rest


def _unescape(text: str) -> str:
    def replace(match: re.Match[str]) -> str:
        code = match.group(1)
        if code.startswith("u"):
            if len(code) != 5:
                raise ValueError(f"malformed \\uXXXX escape in {text!r}")
            return chr(int(code[1:], 16))
        return _PROPERTY_ESCAPES.get(code, code)

    return _PROPERTY_ESCAPE.sub(replace, text)
