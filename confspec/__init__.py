from __future__ import annotations

"""
confspec - Typed configuration specs resolved from layered sources.

This package provides:
- Spec / Item: declare typed configuration items, optionally nested.
- ConfigManager: orchestrates loading, merging, coercing and validating configuration.
- Config: read-only, typed configuration snapshot.
- Built-in sources: dict, key/value, flat, file, environment variables.
"""

from .exceptions import (
    ConfigSourceError,
    ConfigurationError,
    ConstraintViolationError,
    DuplicatePathError,
    InvalidDefaultError,
    InvalidPathError,
    LazyEvaluationError,
    MissingRequiredValueError,
    PathCollisionError,
    RepeatedSpecError,
    ResolutionError,
    SourceNotFoundError,
    SourceParseError,
    SourceUnavailableError,
    SpecError,
    SpecFrozenError,
    TypeCoercionError,
    UnknownPathError,
    UnknownSourcePathError,
    ValidationError,
)
from .manager import Config, ConfigManager
from .resolver import Layer, resolve
from .sources import (
    ConfigSource,
    DictSource,
    EnvSource,
    FileSource,
    FlatSource,
    KVSource,
)
from .spec import Item, ItemDescription, Spec
from .types import (
    BOOL,
    DURATION,
    FLOAT,
    INT,
    SIZE,
    STRING,
    EnumType,
    IntType,
    ListType,
    MapType,
    SizeType,
    ValueType,
)
from .utils import env_key_to_path, path_to_env_key

__all__ = [
    "BOOL",
    "DURATION",
    "FLOAT",
    "INT",
    "SIZE",
    "STRING",
    "Config",
    "ConfigManager",
    "ConfigSource",
    "ConfigSourceError",
    "ConfigurationError",
    "ConstraintViolationError",
    "DictSource",
    "DuplicatePathError",
    "EnumType",
    "EnvSource",
    "FileSource",
    "FlatSource",
    "IntType",
    "InvalidDefaultError",
    "InvalidPathError",
    "Item",
    "ItemDescription",
    "KVSource",
    "Layer",
    "LazyEvaluationError",
    "ListType",
    "MapType",
    "MissingRequiredValueError",
    "PathCollisionError",
    "RepeatedSpecError",
    "ResolutionError",
    "SourceNotFoundError",
    "SourceParseError",
    "SizeType",
    "SourceUnavailableError",
    "Spec",
    "SpecError",
    "SpecFrozenError",
    "TypeCoercionError",
    "UnknownPathError",
    "UnknownSourcePathError",
    "ValidationError",
    "ValueType",
    "env_key_to_path",
    "path_to_env_key",
    "resolve",
]
