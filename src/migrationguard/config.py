"""Analyzer configuration."""

from __future__ import annotations

import os
from typing import Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from migrationguard.engine import EngineKind, parse_version
from migrationguard.exceptions import ConfigurationError
from migrationguard.rules import VERSION_THRESHOLDS, Status

ENV_PREFIX = "MIGRATIONGUARD_"


class AnalyzerConfig(BaseModel):
    """Options for one analysis run.

    start_after:
        Name of the last applied unit. It and every unit before it in batch
        order give sequencing context but are not reported.
    fail_on:
        Lowest status that counts as a blocking issue.
    version_thresholds:
        Overrides merged over the built-in feature thresholds, e.g.
        ``{"fast_column_default": {"postgres": "11"}}``.
    """

    model_config = ConfigDict(frozen=True)

    start_after: str | None = None
    fail_on: Status = Status.UNSAFE
    version_thresholds: dict[str, dict[EngineKind, tuple[int, ...]]] = Field(default_factory=dict)

    @field_validator("fail_on", mode="before")
    @classmethod
    def _normalize_fail_on(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_")
        return v

    @field_validator("version_thresholds", mode="before")
    @classmethod
    def _normalize_thresholds(cls, v: object) -> object:
        if not isinstance(v, Mapping):
            return v
        return {
            feature: {kind: parse_version(version) for kind, version in per_engine.items()}
            for feature, per_engine in v.items()
        }

    def thresholds(self) -> dict[str, dict[EngineKind, tuple[int, ...]]]:
        """Built-in thresholds with this config's overrides applied."""
        merged = {feature: dict(per_engine) for feature, per_engine in VERSION_THRESHOLDS.items()}
        for feature, per_engine in self.version_thresholds.items():
            merged.setdefault(feature, {}).update(per_engine)
        return merged

    def reported_units(self, unit_names: Sequence[str]) -> set[int]:
        """Indexes of the units that come after ``start_after`` in batch order.

        Raises ConfigurationError if ``start_after`` names no unit.
        """
        if self.start_after is None:
            return set(range(len(unit_names)))
        try:
            applied = list(unit_names).index(self.start_after)
        except ValueError:
            raise ConfigurationError(
                f"start_after {self.start_after!r} is not a migration in this batch"
            ) from None
        return set(range(applied + 1, len(unit_names)))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AnalyzerConfig:
        """Build a config from ``MIGRATIONGUARD_*`` environment variables."""
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        start_after = env.get(f"{ENV_PREFIX}START_AFTER")
        if start_after:
            values["start_after"] = start_after
        fail_on = env.get(f"{ENV_PREFIX}FAIL_ON")
        if fail_on:
            values["fail_on"] = fail_on
        try:
            return cls(**values)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid {ENV_PREFIX}* environment: {exc}") from None
