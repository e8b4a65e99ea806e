from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Tuple

from .exceptions import (
    DuplicatePathError,
    InvalidDefaultError,
    InvalidPathError,
    PathCollisionError,
    RepeatedSpecError,
    SpecFrozenError,
    UnknownPathError,
)
from .types import ValueType, infer_type, type_of
from .utils import is_prefix_of, join_path, path_to_env_key, split_path
from .validation import constraint_violations, json_schema_for_spec


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING: Any = _Missing()


@dataclass(frozen=True, eq=False)
class Item:
    """
    Descriptor of a single configuration field.

    Items compare by identity: the same path declared in two specs gives two
    distinct descriptors.
    """

    path: str
    type: ValueType
    required: bool = False
    default: Any = MISSING
    description: str = ""
    nullable: bool = False
    constraints: Mapping[str, Any] | None = None
    thunk: Callable[[Mapping[str, Any]], Any] | None = None

    def __post_init__(self) -> None:
        if not split_path(self.path):
            raise InvalidPathError(self.path)
        if self.required and self.default is not MISSING:
            raise InvalidDefaultError(self.path, "a required item cannot have a default")
        if not self.required and self.default is MISSING and self.thunk is None:
            raise InvalidDefaultError(self.path, "an optional item needs a default")

    @property
    def segments(self) -> Tuple[str, ...]:
        return split_path(self.path)

    @property
    def is_lazy(self) -> bool:
        return self.thunk is not None

    @property
    def kind(self) -> str:
        if self.required:
            return "required"
        return "lazy" if self.is_lazy else "optional"

    def __repr__(self) -> str:
        return f"<Item {self.path} {self.type.name} {self.kind}>"


@dataclass(frozen=True)
class ItemDescription:
    """Documentation record of one item, used for help and diagnostics output."""

    path: str
    type: str
    required: bool
    default: Any = None
    nullable: bool = False
    description: str = ""
    lazy: bool = False

    def env_name(self, prefix: str = "", separator: str = "_") -> str:
        """Name of the environment variable that binds to this item."""
        return path_to_env_key(self.path, prefix, separator)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "type": self.type,
            "required": self.required,
            "default": self.default,
            "nullable": self.nullable,
            "description": self.description,
            "lazy": self.lazy,
        }


@dataclass(eq=False)
class Spec:
    """A named, possibly nested, collection of item descriptors."""

    name: str = ""
    description: str = ""
    _items: List[Item] = field(default_factory=list, init=False, repr=False)
    _children: Dict[str, "Spec"] = field(default_factory=dict, init=False, repr=False)
    _frozen: bool = field(default=False, init=False, repr=False)

    # Declaration

    def declare_optional(
        self,
        path: str,
        default: Any,
        type: Any = None,
        *,
        description: str = "",
        nullable: bool = False,
        constraints: Mapping[str, Any] | None = None,
    ) -> Item:
        """
        Declare an item with a default value.

        :param path: dotted path relative to this spec.
        :param default: value used when no source defines the item.
        :param type: a ValueType or Python annotation, inferred from the
                     default when omitted.
        :raises DuplicatePathError: if the path is already declared in this
                                    spec or one of its descendants.
        """
        if type is None:
            if default is None:
                raise InvalidDefaultError(path, "cannot infer a type from a None default")
            value_type = infer_type(default)
        else:
            value_type = type_of(type)

        if default is None:
            if not nullable:
                raise InvalidDefaultError(path, "None is only allowed for nullable items")
        else:
            try:
                default = value_type.coerce(default)
            except ValueError as exc:
                raise InvalidDefaultError(path, str(exc)) from exc
            violations = constraint_violations(default, constraints)
            if violations:
                raise InvalidDefaultError(path, violations[0])

        item = Item(
            path.strip(),
            value_type,
            required=False,
            default=default,
            description=description,
            nullable=nullable,
            constraints=constraints,
        )
        self._add_item(item)
        return item

    def declare_required(
        self,
        path: str,
        type: Any,
        *,
        description: str = "",
        nullable: bool = False,
        constraints: Mapping[str, Any] | None = None,
    ) -> Item:
        """Declare an item that must be supplied by a source."""
        item = Item(
            path.strip(),
            type_of(type),
            required=True,
            description=description,
            nullable=nullable,
            constraints=constraints,
        )
        self._add_item(item)
        return item

    def declare_lazy(
        self,
        path: str,
        thunk: Callable[[Mapping[str, Any]], Any],
        type: Any,
        *,
        description: str = "",
        nullable: bool = False,
    ) -> Item:
        """
        Declare an item whose fallback value is computed from other values.

        `thunk` receives a read-only mapping of the qualified paths resolved so
        far. A source that defines the path still wins over the thunk.
        """
        item = Item(
            path.strip(),
            type_of(type),
            required=False,
            description=description,
            nullable=nullable,
            thunk=thunk,
        )
        self._add_item(item)
        return item

    def _add_item(self, item: Item) -> None:
        self._check_mutable()
        if any(existing is item for existing in self._items):
            raise RepeatedSpecError(repr(item))
        segments = item.segments
        for other_path, _ in self.iter_items():
            other = split_path(other_path)
            if other == segments:
                raise DuplicatePathError(item.path)
            if is_prefix_of(other, segments) or is_prefix_of(segments, other):
                raise PathCollisionError(item.path, other_path)
        self._items.append(item)

    def nest(self, prefix: str, child: "Spec") -> "Spec":
        """
        Attach `child` under `prefix` and return it.

        Registration is all-or-nothing: every qualified path the child brings is
        checked before anything is attached. The child is frozen.

        :raises PathCollisionError: if a resulting qualified path collides with
                                    an existing one.
        """
        self._check_mutable()
        prefix = join_path(*split_path(prefix))
        if child is self or child in self._specs():
            raise RepeatedSpecError(child._label)
        own_items = {id(item) for _, item in self.iter_items()}
        existing = [split_path(p) for p, _ in self.iter_items()]

        incoming = []
        for path, item in child.iter_items():
            if id(item) in own_items:
                raise RepeatedSpecError(repr(item))
            incoming.append(split_path(join_path(prefix, path)))

        for new in incoming:
            for old in existing:
                if new == old or is_prefix_of(old, new) or is_prefix_of(new, old):
                    raise PathCollisionError(".".join(new), ".".join(old))

        if prefix in self._children:
            # Same prefix, disjoint paths: keep both under a merged child.
            merged = self._children[prefix].merge(child)
            self._children[prefix] = merged
        else:
            self._children[prefix] = child
        child.freeze()
        return child

    def merge(self, other: "Spec") -> "Spec":
        """
        Compose two specs into a new one holding both trees.

        Both inputs are frozen; neither is modified.

        :raises PathCollisionError: if the two trees share a qualified path.
        """
        if other is self:
            raise RepeatedSpecError(self._label)
        combined = Spec(
            name=self.name or other.name,
            description=self.description or other.description,
        )
        for source in (self, other):
            for item in source._items:
                try:
                    combined._add_item(item)
                except DuplicatePathError as exc:
                    raise PathCollisionError(item.path, getattr(exc, "other", None)) from exc
            for prefix, child in source._children.items():
                combined.nest(prefix, child)
        self.freeze()
        other.freeze()
        combined.freeze()
        return combined

    def freeze(self) -> "Spec":
        self._frozen = True
        for child in self._children.values():
            child.freeze()
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise SpecFrozenError(self._label)

    @property
    def _label(self) -> str:
        return f"'{self.name}'" if self.name else "<anonymous>"

    # Introspection

    @property
    def items(self) -> Tuple[Item, ...]:
        """Items declared directly on this spec."""
        return tuple(self._items)

    @property
    def children(self) -> Mapping[str, "Spec"]:
        return MappingProxyType(self._children)

    def _specs(self) -> Iterator["Spec"]:
        for child in self._children.values():
            yield child
            yield from child._specs()

    def iter_items(self, prefix: str = "") -> Iterator[Tuple[str, Item]]:
        """Yield ``(qualified_path, item)`` pairs depth-first."""
        for item in self._items:
            yield join_path(prefix, item.path), item
        for child_prefix, child in self._children.items():
            yield from child.iter_items(join_path(prefix, child_prefix))

    def paths(self) -> List[str]:
        return [path for path, _ in self.iter_items()]

    def qualify(self, item: Item) -> str:
        """Return the qualified path of `item` within this tree."""
        for path, candidate in self.iter_items():
            if candidate is item:
                return path
        raise UnknownPathError(f"item {item.path}")

    def find(self, path: str) -> Item:
        """Return the item declared at the qualified `path`."""
        for qualified, item in self.iter_items():
            if qualified == path:
                return item
        raise UnknownPathError(f"item {path}")

    def __contains__(self, key: object) -> bool:
        if isinstance(key, Item):
            return any(item is key for _, item in self.iter_items())
        if isinstance(key, str):
            return key in self.paths()
        return False

    def __iter__(self) -> Iterator[Item]:
        return (item for _, item in self.iter_items())

    def __len__(self) -> int:
        return sum(1 for _ in self.iter_items())

    def describe(self) -> List[ItemDescription]:
        """Describe every item of the tree, in resolution order."""
        return [
            ItemDescription(
                path=path,
                type=item.type.name,
                required=item.required,
                default=None if item.default is MISSING else item.default,
                nullable=item.nullable,
                description=item.description,
                lazy=item.is_lazy,
            )
            for path, item in self.iter_items()
        ]

    def to_json_schema(self) -> Dict[str, Any]:
        """Export the tree as a JSON Schema document for the nested configuration."""
        return json_schema_for_spec(self)
