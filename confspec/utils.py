from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict, Iterable, Tuple

from .exceptions import InvalidPathError


def split_path(path: str) -> Tuple[str, ...]:
    """
    Split a dotted path into its segments.

    An empty (or blank) path yields an empty tuple. Empty segments such as in
    ``"a..b"`` or ``".a"`` are rejected.
    """
    name = path.strip()
    if not name:
        return ()
    segments = tuple(name.split("."))
    if "" in segments:
        raise InvalidPathError(path)
    return segments


def join_path(*parts: str) -> str:
    """Join path fragments with dots, skipping empty fragments."""
    return ".".join(p for p in parts if p)


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two mappings.

    Values from `override` take precedence.
    Nested mappings are merged, all other values are replaced.
    """
    result: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], Mapping)
            and isinstance(value, Mapping)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def flatten_mapping(data: Mapping[Any, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten a nested mapping into ``dotted.path -> value`` pairs.

    Keys that already contain dots are kept as they are, so hierarchical and
    pre-flattened input produce the same result. Lists and other non-mapping
    values are leaves. An empty nested mapping contributes nothing.
    """
    result: Dict[str, Any] = {}
    for key, value in data.items():
        path = join_path(prefix, str(key).strip())
        if isinstance(value, Mapping):
            result.update(flatten_mapping(value, path))
        else:
            result[path] = value
    return result


def unflatten_mapping(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Inverse of :func:`flatten_mapping`: build nested dicts from dotted keys."""
    result: Dict[str, Any] = {}
    for path, value in data.items():
        parts = path.split(".")
        nested: Dict[str, Any] = {}
        current = nested
        for part in parts[:-1]:
            child: Dict[str, Any] = {}
            current[part] = child
            current = child
        current[parts[-1]] = value
        result = deep_merge(result, nested)
    return result


def env_key_to_path(key: str, prefix: str = "", separator: str = "_") -> str | None:
    """
    Map an environment variable name onto a dotted, lowercase path.

    ``SOURCE_TEST_TYPE`` becomes ``source.test.type``. The prefix is matched
    literally and stripped first. Returns None when the key does not carry the
    prefix or nothing is left after stripping it.
    """
    if prefix and not key.startswith(prefix):
        return None
    raw_key = key[len(prefix):]
    parts = [p.lower() for p in raw_key.split(separator) if p]
    if not parts:
        return None
    return ".".join(parts)


def path_to_env_key(path: str, prefix: str = "", separator: str = "_") -> str:
    """
    Map a dotted path onto an environment variable name.

    ``source.test.type`` becomes ``SOURCE_TEST_TYPE``. This is the inverse of
    :func:`env_key_to_path` as long as no path segment contains the separator.
    """
    return prefix + separator.join(segment.upper() for segment in split_path(path))


def is_prefix_of(prefix: Iterable[str], path: Iterable[str]) -> bool:
    """Whether the segments of `prefix` are a strict leading part of `path`."""
    prefix = tuple(prefix)
    path = tuple(path)
    return len(prefix) < len(path) and path[: len(prefix)] == prefix
