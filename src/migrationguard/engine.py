"""Target database engine and version context."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from migrationguard.exceptions import ConfigurationError


class EngineKind(str, Enum):
    """Supported database engines."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    MARIADB = "mariadb"


_KIND_ALIASES: dict[str, EngineKind] = {
    "postgres": EngineKind.POSTGRES,
    "postgresql": EngineKind.POSTGRES,
    "pg": EngineKind.POSTGRES,
    "mysql": EngineKind.MYSQL,
    "mariadb": EngineKind.MARIADB,
}


def parse_version(value: Any) -> tuple[int, ...] | None:
    """Normalize a version given as "8.0.12", 12, 9.2 or a tuple.

    Examples:
        "8.0.12" -> (8, 0, 12)
        12       -> (12,)
        9.2      -> (9, 2)
        None     -> None
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid engine version: {value!r}")
    if isinstance(value, (tuple, list)):
        parts = list(value)
    elif isinstance(value, (int, float, str)):
        text = str(value).strip()
        if not text:
            return None
        parts = text.split(".")
    else:
        raise ValueError(f"Invalid engine version: {value!r}")
    try:
        version = tuple(int(p) for p in parts)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid engine version: {value!r}") from None
    if not version or any(p < 0 for p in version):
        raise ValueError(f"Invalid engine version: {value!r}")
    return version


def _pad(a: tuple[int, ...], b: tuple[int, ...]) -> tuple[tuple[int, ...], tuple[int, ...]]:
    width = max(len(a), len(b))
    return a + (0,) * (width - len(a)), b + (0,) * (width - len(b))


class Engine(BaseModel):
    """An immutable (engine kind, version) pair supplied per analysis run.

    ``version`` may be omitted; rules that depend on a version threshold then
    report the operation as conditionally safe rather than guessing.
    """

    model_config = ConfigDict(frozen=True)

    kind: EngineKind
    version: tuple[int, ...] | None = None
    time_zone: str = "UTC"

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _KIND_ALIASES.get(v.strip().lower(), v)
        return v

    @field_validator("version", mode="before")
    @classmethod
    def _normalize_version(cls, v: Any) -> tuple[int, ...] | None:
        return parse_version(v)

    # ── Constructors ──────────────────────────────────────────────────

    @classmethod
    def postgres(cls, version: Any = None, *, time_zone: str = "UTC") -> Engine:
        return cls(kind=EngineKind.POSTGRES, version=version, time_zone=time_zone)

    @classmethod
    def mysql(cls, version: Any = None) -> Engine:
        return cls(kind=EngineKind.MYSQL, version=version)

    @classmethod
    def mariadb(cls, version: Any = None) -> Engine:
        return cls(kind=EngineKind.MARIADB, version=version)

    @classmethod
    def parse(cls, spec: str, *, time_zone: str = "UTC") -> Engine:
        """Parse ``"postgres:12"``, ``"mysql:8.0.12"`` or a bare ``"mariadb"``."""
        name, _, version = spec.partition(":")
        kind = _KIND_ALIASES.get(name.strip().lower())
        if kind is None:
            raise ConfigurationError(f"Unknown engine: {name!r}")
        try:
            return cls(kind=kind, version=version or None, time_zone=time_zone)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid engine spec {spec!r}: {exc}") from None

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def is_postgres(self) -> bool:
        return self.kind is EngineKind.POSTGRES

    @property
    def is_mysql_family(self) -> bool:
        return self.kind in (EngineKind.MYSQL, EngineKind.MARIADB)

    def at_least(self, threshold: tuple[int, ...]) -> bool:
        """Return True if this engine's version is >= threshold.

        Callers must check ``version is not None`` first.
        """
        if self.version is None:
            raise ValueError("Engine version is unknown")
        mine, theirs = _pad(self.version, tuple(threshold))
        return mine >= theirs

    def label(self) -> str:
        if self.version is None:
            return self.kind.value
        return f"{self.kind.value} {'.'.join(str(p) for p in self.version)}"

    def __str__(self) -> str:
        return self.label()
