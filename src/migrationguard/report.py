"""Report model - verdicts and sequencing violations for one migration batch."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterator

from migrationguard.engine import Engine
from migrationguard.operations import Operation
from migrationguard.rules import Status, Verdict


@dataclass(frozen=True, order=True)
class OperationRef:
    """Position of an operation in a batch: (unit index, operation index)."""

    unit_index: int
    operation_index: int
    unit_name: str = field(default="", compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_index": self.unit_index,
            "unit_name": self.unit_name,
            "operation_index": self.operation_index,
        }

    def __str__(self) -> str:
        return f"{self.unit_name or self.unit_index}#{self.operation_index}"


@dataclass(frozen=True)
class SequencingViolation:
    """Two operations whose placement relative to each other is unsafe.

    ``first`` always precedes ``second`` in batch order.
    """

    rule_id: str
    message: str
    first: OperationRef
    second: OperationRef
    assured: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "message": self.message,
            "first": self.first.to_dict(),
            "second": self.second.to_dict(),
            "assured": self.assured,
        }


@dataclass(frozen=True)
class OperationResult:
    ref: OperationRef
    operation: Operation
    verdict: Verdict

    @property
    def status(self) -> Status:
        return self.verdict.status

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.ref.to_dict(),
            "operation": self.operation.to_dict(),
            "description": self.operation.describe(),
            "verdict": self.verdict.to_dict(),
        }


@dataclass(frozen=True)
class AnalysisReport:
    """Result of one analysis run. Read-only after construction.

    Supports iteration over per-operation results and conversion to
    dicts/JSON/DataFrames.
    """

    engine: Engine
    results: tuple[OperationResult, ...] = ()
    violations: tuple[SequencingViolation, ...] = ()
    fail_on: Status = Status.UNSAFE

    def __post_init__(self) -> None:
        object.__setattr__(self, "results", tuple(sorted(self.results, key=lambda r: r.ref)))
        object.__setattr__(
            self,
            "violations",
            tuple(sorted(self.violations, key=lambda v: (v.first, v.second, v.rule_id))),
        )

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[OperationResult]:
        return iter(self.results)

    # ── Queries ───────────────────────────────────────────────────────

    def unsafe_operations(self) -> list[OperationResult]:
        """Results whose verdict is Unsafe, in batch order."""
        return [r for r in self.results if r.status is Status.UNSAFE]

    def worst_severity(self) -> Status:
        """Highest status in the report; any sequencing violation counts as Unsafe.

        Assurance is ignored here: assured results and violations still
        describe what the database will do. Only ``has_blocking_issues``
        excuses them.
        """
        if self.violations:
            return Status.UNSAFE
        return max((r.status for r in self.results), key=lambda s: s.rank, default=Status.SAFE)

    def has_blocking_issues(self) -> bool:
        """True if any non-assured result reaches ``fail_on`` or any violation remains."""
        if any(not v.assured for v in self.violations):
            return True
        return any(
            not r.verdict.assured and r.status.rank >= self.fail_on.rank
            for r in self.results
        )

    def results_for(self, unit_name: str) -> list[OperationResult]:
        return [r for r in self.results if r.ref.unit_name == unit_name]

    def counts(self) -> dict[str, int]:
        """Number of results per status."""
        counts = {status.value: 0 for status in Status}
        for r in self.results:
            counts[r.status.value] += 1
        return counts

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "engine": {
                "kind": self.engine.kind.value,
                "version": list(self.engine.version) if self.engine.version else None,
                "time_zone": self.engine.time_zone,
            },
            "worst_severity": self.worst_severity().value,
            "has_blocking_issues": self.has_blocking_issues(),
            "counts": self.counts(),
            "results": [r.to_dict() for r in self.results],
            "violations": [v.to_dict() for v in self.violations],
        }

    def to_json(self, indent: int | None = None) -> str:
        """Deterministic JSON: identical reports give identical strings."""
        return json.dumps(self.to_dict(), sort_keys=True, indent=indent)

    def to_df(self) -> Any:
        """Convert per-operation results to a pandas DataFrame. Requires pandas."""
        try:
            import pandas as pd
        except ImportError:
            raise ImportError(
                "pandas is required for to_df(). "
                "Install with: pip install migrationguard[pandas]"
            )
        rows = [
            {
                "unit": r.ref.unit_name,
                "index": r.ref.operation_index,
                "kind": r.operation.kind,
                "description": r.operation.describe(),
                "status": r.status.value,
                "remediation": r.verdict.remediation.value,
                "rule_id": r.verdict.rule_id,
                "assured": r.verdict.assured,
            }
            for r in self.results
        ]
        columns = ["unit", "index", "kind", "description", "status", "remediation", "rule_id", "assured"]
        return pd.DataFrame(rows, columns=columns)
