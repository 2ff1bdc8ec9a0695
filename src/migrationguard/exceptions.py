"""Exception hierarchy for migrationguard."""

from __future__ import annotations

from typing import Any


class MigrationGuardError(Exception):
    """Base exception for all migrationguard errors."""


class InvalidOperation(MigrationGuardError):
    """An operation is malformed or carries a contradictory flag combination."""

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.field = field


class UnsupportedEngineVersion(MigrationGuardError):
    """No version threshold is known for the engine a rule was asked about."""

    def __init__(self, message: str, *, engine: Any = None, feature: str | None = None) -> None:
        super().__init__(message)
        self.engine = engine
        self.feature = feature


class ConfigurationError(MigrationGuardError):
    """Invalid engine specification or analyzer configuration."""


class LoaderError(MigrationGuardError):
    """A migration definition could not be read or imported."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path
