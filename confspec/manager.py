from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from copy import deepcopy
from types import MappingProxyType
from typing import Any, Dict, Iterator, List

import structlog

from .exceptions import UnknownPathError
from .resolver import as_layer, resolve
from .spec import MISSING, Item, ItemDescription, Spec
from .utils import join_path, split_path, unflatten_mapping

logger = structlog.get_logger()


class Config(Mapping[str, Any]):
    """
    Read-only snapshot of a resolved configuration.

    Keys are qualified item paths. Values can be read by descriptor
    (cfg[tcp_port]), by path (cfg["server.tcpPort"]) or attribute-style
    (cfg.server.tcpPort). A snapshot never changes once built; reloading
    produces a new one.
    """

    def __init__(
        self,
        spec: Spec,
        values: Mapping[str, Any],
        origins: Mapping[str, str] | None = None,
        *,
        _prefix: str = "",
    ):
        self._spec = spec
        self._values = MappingProxyType(dict(values))
        self._origins = MappingProxyType(dict(origins or {}))
        self._prefix = _prefix

    @property
    def spec(self) -> Spec:
        return self._spec

    def _full_path(self, key: Any) -> str:
        if isinstance(key, Item):
            path = self._spec.qualify(key)
            if self._prefix and not path.startswith(self._prefix + "."):
                raise UnknownPathError(f"item {key.path}")
            return path
        if isinstance(key, str):
            return join_path(self._prefix, key)
        raise UnknownPathError(repr(key))

    def _relative(self, path: str) -> str:
        return path[len(self._prefix) + 1:] if self._prefix else path

    def __getitem__(self, key: Any) -> Any:
        path = self._full_path(key)
        try:
            return self._values[path]
        except KeyError:
            raise UnknownPathError(path) from None

    def __iter__(self) -> Iterator[str]:
        marker = self._prefix + "." if self._prefix else ""
        return (self._relative(p) for p in self._values if p.startswith(marker))

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __contains__(self, key: object) -> bool:
        try:
            self[key]
        except UnknownPathError:
            return False
        return True

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        path = join_path(self._prefix, name)
        if path in self._values:
            return self._values[path]
        if any(p.startswith(path + ".") for p in self._values):
            return self.at(name)
        raise AttributeError(name)

    def get(self, key: Any, default: Any = MISSING) -> Any:
        """
        Return the value for an item descriptor or path.

        :raises UnknownPathError: if the item does not belong to the resolved
                                  spec and no default was given.
        """
        try:
            return self[key]
        except UnknownPathError:
            if default is MISSING:
                raise
            return default

    def at(self, prefix: str) -> "Config":
        """Return a view of the subtree at `prefix`, with paths relative to it."""
        path = join_path(self._prefix, *split_path(prefix))
        if not any(p.startswith(path + ".") for p in self._values):
            raise UnknownPathError(path)
        return Config(self._spec, self._values, self._origins, _prefix=path)

    def origin(self, key: Any) -> str:
        """Name of the source that supplied the value, or "default"/"lazy"."""
        path = self._full_path(key)
        if path not in self._origins:
            raise UnknownPathError(path)
        return self._origins[path]

    def to_flat_dict(self) -> Dict[str, Any]:
        """Return a deep copy of the values keyed by (relative) dotted path."""
        return {key: deepcopy(self[key]) for key in self}

    def to_dict(self) -> Dict[str, Any]:
        """Return a deep copy of the underlying data as nested dicts."""
        return unflatten_mapping(self.to_flat_dict())

    def __repr__(self) -> str:
        # Avoid dumping potentially huge or sensitive configs verbosely
        keys = list(self)
        keys_preview = ", ".join(keys[:5])
        more = "..." if len(keys) > 5 else ""
        return f"<Config keys=[{keys_preview}{more}]>"


class ConfigManager:
    """
    Central orchestrator for loading, merging and validating configuration.

    Typical usage:

        from confspec import ConfigManager, Spec, DictSource, FileSource, EnvSource, Layer

        server = Spec("server")
        host = server.declare_optional("host", "0.0.0.0")
        tcp_port = server.declare_required("tcpPort", int)

        manager = ConfigManager(
            server,
            sources=[
                DictSource(defaults),
                FileSource("/etc/myapp/config.yaml", optional=True),
                Layer(FileSource("config.local.yaml"), mandatory=True),
                EnvSource("MYAPP_"),
            ],
            case_insensitive=True,
        )

        cfg = manager.load()
        port = cfg[tcp_port]
    """

    def __init__(
        self,
        spec: Spec,
        sources: Iterable[Any] = (),
        *,
        schema: Mapping[str, Any] | None = None,
        fail_on_unknown_path: bool = False,
        case_insensitive: bool = False,
    ):
        self._spec = spec.freeze()
        self._layers = [as_layer(entry) for entry in sources]
        self._schema = schema
        self._fail_on_unknown_path = fail_on_unknown_path
        self._case_insensitive = case_insensitive
        self._snapshot: Config | None = None
        self._reload_lock = threading.Lock()

    @property
    def spec(self) -> Spec:
        return self._spec

    def _resolve(self, layers: List[Any]) -> Config:
        return resolve(
            self._spec,
            layers,
            schema=self._schema,
            fail_on_unknown_path=self._fail_on_unknown_path,
            case_insensitive=self._case_insensitive,
        )

    def load(self) -> Config:
        """
        Load, merge and validate configuration from all configured sources.

        The sources are applied by rank; with equal ranks later sources
        override earlier ones.
        """
        with self._reload_lock:
            snapshot = self._resolve(self._layers)
            self._snapshot = snapshot
        return snapshot

    def reload(self, sources: Iterable[Any] | None = None) -> Config:
        """
        Resolve again and swap the current snapshot.

        Readers holding the previous snapshot keep a consistent view. If the
        pass fails the current snapshot stays in place and the error propagates.
        """
        with self._reload_lock:
            layers = self._layers if sources is None else [as_layer(e) for e in sources]
            snapshot = self._resolve(layers)
            self._layers = layers
            self._snapshot = snapshot
        logger.info("config_reloaded", spec=self._spec.name, items=len(snapshot))
        return snapshot

    @property
    def config(self) -> Config:
        """The current snapshot, loading it on first access."""
        snapshot = self._snapshot
        if snapshot is None:
            snapshot = self.load()
        return snapshot

    def get(self, key: Any, default: Any = MISSING) -> Any:
        return self.config.get(key, default)

    def __getitem__(self, key: Any) -> Any:
        return self.config[key]

    def describe(self) -> List[ItemDescription]:
        return self._spec.describe()
