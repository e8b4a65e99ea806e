from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Tuple

import structlog

from .exceptions import (
    ConfigurationError,
    ConstraintViolationError,
    LazyEvaluationError,
    MissingRequiredValueError,
    ResolutionError,
    SourceUnavailableError,
    TypeCoercionError,
    UnknownSourcePathError,
)
from .sources import ConfigSource, DictSource
from .spec import MISSING, Item, Spec
from .types import MapType
from .utils import flatten_mapping, unflatten_mapping
from .validation import constraint_violations, validate_config

logger = structlog.get_logger()

DEFAULT_ORIGIN = "default"
LAZY_ORIGIN = "lazy"


@dataclass(frozen=True)
class Layer:
    """
    One entry of the layered source list.

    :param source: the adapter producing raw values.
    :param rank: precedence; falls back to ``source.precedence``, then 0.
    :param mandatory: when True an unavailable source fails the pass instead
                      of being skipped with a warning.
    """

    source: ConfigSource
    rank: int | None = None
    mandatory: bool = False

    @property
    def effective_rank(self) -> int:
        if self.rank is not None:
            return self.rank
        if self.source.precedence is not None:
            return self.source.precedence
        return 0


@dataclass(frozen=True)
class _LoadedLayer:
    name: str
    values: Dict[str, Any]


def as_layer(entry: Any) -> Layer:
    """Normalize a ConfigSource, Layer or plain mapping into a Layer."""
    if isinstance(entry, Layer):
        return entry
    if isinstance(entry, ConfigSource):
        return Layer(entry)
    if isinstance(entry, Mapping):
        return Layer(DictSource(entry))
    raise TypeError(f"cannot use {entry!r} as a configuration source")


def order_layers(layers: Iterable[Layer]) -> List[Layer]:
    """Return layers highest precedence first; on equal rank the later layer comes first."""
    indexed = list(enumerate(layers))
    indexed.sort(key=lambda pair: (pair[1].effective_rank, pair[0]), reverse=True)
    return [layer for _, layer in indexed]


def resolve(
    spec: Spec,
    layers: Iterable[Any],
    *,
    schema: Mapping[str, Any] | None = None,
    fail_on_unknown_path: bool = False,
    case_insensitive: bool = False,
):
    """
    Run one resolution pass.

    :param spec: the schema to resolve; it is frozen by this call.
    :param layers: ConfigSource, Layer or mapping entries, lowest precedence
                   first when ranks are equal.
    :param schema: optional JSON Schema the nested result must satisfy.
    :param fail_on_unknown_path: report source keys that match no item.
    :param case_insensitive: match source keys and item paths case-folded.
    :returns: an immutable Config snapshot.
    :raises ResolutionError: listing every failure of the pass.
    """
    from .manager import Config

    spec.freeze()
    layers = [as_layer(entry) for entry in layers]
    logger.debug("resolution_started", spec=spec.name, layers=len(layers))

    errors: List[ConfigurationError] = []
    loaded = _load_layers(order_layers(layers), errors, case_insensitive)

    values: Dict[str, Any] = {}
    origins: Dict[str, str] = {}
    lazy: List[Tuple[str, Item]] = []

    for path, item in spec.iter_items():
        key = path.casefold() if case_insensitive else path
        found, raw, origin = _lookup(loaded, key, item)

        if not found:
            if item.is_lazy:
                lazy.append((path, item))
            elif item.required:
                errors.append(MissingRequiredValueError(path))
            else:
                values[path] = copy.deepcopy(item.default)
                origins[path] = DEFAULT_ORIGIN
            continue

        value = _coerce(path, item, raw, errors)
        if value is not MISSING:
            values[path] = value
            origins[path] = origin

    for path, item in lazy:
        try:
            raw = item.thunk(MappingProxyType(dict(values)))
        except Exception as exc:
            errors.append(LazyEvaluationError(path, exc))
            continue
        value = _coerce(path, item, raw, errors)
        if value is not MISSING:
            values[path] = value
            origins[path] = LAZY_ORIGIN

    if fail_on_unknown_path:
        errors.extend(_unknown_paths(spec, loaded, case_insensitive))

    if schema is not None and not errors:
        errors.extend(validate_config(unflatten_mapping(values), schema))

    if errors:
        logger.info("resolution_failed", spec=spec.name, errors=len(errors))
        raise ResolutionError(errors)

    logger.debug("resolution_completed", spec=spec.name, items=len(values))
    return Config(spec, values, origins)


def _load_layers(
    layers: List[Layer], errors: List[ConfigurationError], case_insensitive: bool
) -> List[_LoadedLayer]:
    loaded = []
    for layer in layers:
        source = layer.source
        try:
            data = source.load()
            if data is not None and not isinstance(data, Mapping):
                raise ConfigurationError(
                    f"Configuration source {source!r} returned a non-mapping value."
                )
        except Exception as exc:
            error = SourceUnavailableError(source.name, exc)
            error.__cause__ = exc
            if layer.mandatory:
                errors.append(error)
            else:
                logger.warning("source_unavailable", source=source.name, error=str(exc))
            continue

        if not data:
            logger.debug("source_skipped", source=source.name)
            continue

        flat = flatten_mapping(data)
        if case_insensitive:
            flat = {key.casefold(): value for key, value in flat.items()}
        loaded.append(_LoadedLayer(source.name, flat))
    return loaded


def _lookup(loaded: List[_LoadedLayer], key: str, item: Item) -> Tuple[bool, Any, str]:
    prefix = key + "."
    collects_subtree = isinstance(item.type, MapType)
    for layer in loaded:
        if key in layer.values:
            raw = layer.values[key]
            if raw is None and not item.nullable:
                continue
            return True, raw, layer.name
        if collects_subtree:
            subtree = {
                k[len(prefix):]: v for k, v in layer.values.items() if k.startswith(prefix)
            }
            if subtree:
                return True, subtree, layer.name
    return False, None, ""


def _coerce(path: str, item: Item, raw: Any, errors: List[ConfigurationError]) -> Any:
    if raw is None:
        if item.nullable:
            return None
        errors.append(TypeCoercionError(path, raw, item.type.name, "value must not be null"))
        return MISSING
    try:
        value = item.type.coerce(raw)
    except (ValueError, OverflowError) as exc:
        errors.append(TypeCoercionError(path, raw, item.type.name, str(exc)))
        return MISSING

    violations = constraint_violations(value, item.constraints)
    for reason in violations:
        errors.append(ConstraintViolationError(path, reason))
    return MISSING if violations else value


def _unknown_paths(
    spec: Spec, loaded: List[_LoadedLayer], case_insensitive: bool
) -> List[UnknownSourcePathError]:
    known = []
    subtrees = []
    for path, item in spec.iter_items():
        key = path.casefold() if case_insensitive else path
        known.append(key)
        if isinstance(item.type, MapType):
            subtrees.append(key + ".")
    known_set = set(known)

    errors = []
    for layer in loaded:
        for key in layer.values:
            if key in known_set or any(key.startswith(p) for p in subtrees):
                continue
            errors.append(UnknownSourcePathError(key, layer.name))
    return errors
