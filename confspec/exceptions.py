from __future__ import annotations

from typing import Any, List, Sequence


class ConfigurationError(Exception):
    """Raised when there is a problem declaring, loading or validating configuration."""


# Declaration-time errors


class SpecError(ConfigurationError):
    """Raised when a spec declaration is invalid."""


class InvalidPathError(SpecError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"'{path}' is not a valid path")


class DuplicatePathError(SpecError):
    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or f"item '{path}' has already been declared")


class PathCollisionError(DuplicatePathError):
    """Raised when a qualified path clashes with the paths already in a spec tree."""

    def __init__(self, path: str, other: str | None = None):
        if other is None or other == path:
            message = f"'{path}' collides with an existing path"
        else:
            message = f"'{path}' collides with existing path '{other}'"
        super().__init__(path, message)
        self.other = other


class RepeatedSpecError(SpecError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"spec or item {name} is already part of this spec tree")


class SpecFrozenError(SpecError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"spec {name} is frozen, no new item can be declared")


class InvalidDefaultError(SpecError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"invalid default for '{path}': {reason}")


# Source errors


class ConfigSourceError(ConfigurationError):
    """Raised by a configuration source when it cannot produce values."""


class SourceNotFoundError(ConfigSourceError):
    """Raised when a non-optional source location does not exist."""


class SourceParseError(ConfigSourceError):
    """Raised when a source exists but its content cannot be decoded."""


class SourceUnavailableError(ConfigSourceError):
    """Wraps any failure raised by a source while loading it."""

    def __init__(self, source: str, cause: BaseException):
        self.source = source
        self.cause = cause
        super().__init__(f"source {source} is unavailable: {cause}")


# Resolution issues. These are collected during a pass, never raised one by one.


class ValidationError(ConfigurationError):
    """Raised when there is a problem validating configuration."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)


class MissingRequiredValueError(ValidationError):
    def __init__(self, path: str):
        super().__init__(path, f"'{path}': required value is missing")


class TypeCoercionError(ValidationError):
    def __init__(self, path: str, raw: Any, target: str, reason: str = ""):
        self.raw = raw
        self.target = target
        self.reason = reason
        message = f"'{path}': cannot convert {raw!r} to {target}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(path, message)


class ConstraintViolationError(ValidationError):
    def __init__(self, path: str, reason: str):
        self.reason = reason
        super().__init__(path, f"'{path}': {reason}")


class UnknownSourcePathError(ValidationError):
    def __init__(self, path: str, source: str):
        self.source = source
        super().__init__(path, f"'{path}': unknown path in source {source}")


class LazyEvaluationError(ValidationError):
    def __init__(self, path: str, cause: BaseException):
        self.cause = cause
        super().__init__(path, f"'{path}': lazy value could not be evaluated: {cause}")


class ResolutionError(ConfigurationError):
    """
    Raised once per failed resolution pass.

    ``errors`` holds every individual failure of the pass, in the order they
    were detected.
    """

    def __init__(self, errors: Sequence[ConfigurationError]):
        self.errors: List[ConfigurationError] = list(errors)
        lines = "\n".join(f"  - {error}" for error in self.errors)
        super().__init__(
            f"Configuration could not be resolved, {len(self.errors)} error(s):\n{lines}"
        )

    @property
    def paths(self) -> List[str]:
        """Paths of the failures that are tied to a configuration item."""
        return [e.path for e in self.errors if isinstance(e, ValidationError)]


# Lookup errors


class UnknownPathError(ConfigurationError, KeyError):
    """Raised when looking up an item or path that the resolved spec does not contain."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"cannot find {name} in config")

    def __str__(self) -> str:
        return str(self.args[0])
