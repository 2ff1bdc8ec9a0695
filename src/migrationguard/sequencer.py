"""Migration sequencer - cross-operation and cross-migration checks.

Runs after every operation has a verdict. Unlike the rule engine it looks at
the whole batch, so it can flag illegal co-location and ordering, and refine
verdicts whose safety depends on what came earlier.

Checks, in order:
1. Operations on a table created earlier in the same unit are safe
2. A concurrent index build or drop must be alone in its unit
3. An unvalidated constraint must be validated in a later unit
4. SET NOT NULL is safe only after a validated ``IS NOT NULL`` check
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from migrationguard.migration import MigrationBatch
from migrationguard.operations import (
    AddCheckConstraint,
    AddForeignKey,
    CreateIndex,
    CreateTable,
    RemoveIndex,
    SetNotNull,
    ValidateCheckConstraint,
    ValidateForeignKey,
)
from migrationguard.report import OperationRef, SequencingViolation
from migrationguard.rules import Status, Verdict

logger = logging.getLogger("migrationguard")

CONCURRENT_INDEX_ISOLATED = "concurrent-index-must-be-isolated"
VALIDATION_DEFERRED = "validation-must-be-deferred"
VALIDATE_BEFORE_CREATE = "validate-before-create"

# Verdicts that stop mattering when the table is brand new (empty, unused)
NEW_TABLE_EXEMPT_RULES = frozenset({
    "create-index",
    "remove-index",
    "add-foreign-key",
    "add-foreign-key-not-valid",
    "add-check-constraint",
    "add-check-constraint-not-valid",
    "add-unique-constraint",
    "add-column-default-rewrite",
    "add-column-volatile-default",
    "change-column-type",
    "change-column-default-with-type",
    "set-not-null",
    "set-not-null-needs-check",
    "set-not-null-scan",
    "set-not-null-copy",
    "unknown-engine-behavior",
})

PENDING_NOT_NULL_RULE = "set-not-null-needs-check"


@dataclass(frozen=True)
class SequencingResult:
    verdicts: list[list[Verdict]]
    violations: list[SequencingViolation]


def _ref(batch: MigrationBatch, unit_index: int, op_index: int) -> OperationRef:
    return OperationRef(unit_index, op_index, batch.units[unit_index].name)


def _ordered(a: OperationRef, b: OperationRef) -> tuple[OperationRef, OperationRef]:
    return (a, b) if a <= b else (b, a)


def _is_concurrent_index(op: Any) -> bool:
    return isinstance(op, (CreateIndex, RemoveIndex)) and op.concurrently


def _validates(creation: Any, validation: Any) -> bool:
    """True if ``validation`` validates the unvalidated ``creation``."""
    if isinstance(creation, AddForeignKey) and isinstance(validation, ValidateForeignKey):
        return creation.matches(validation)
    if isinstance(creation, AddCheckConstraint) and isinstance(validation, ValidateCheckConstraint):
        return creation.table == validation.table and creation.constraint_name == validation.name
    return False


class Sequencer:
    """Second pass over a batch and its per-operation verdicts."""

    def __init__(self, batch: MigrationBatch, verdicts: list[list[Verdict]]) -> None:
        if len(verdicts) != len(batch.units) or any(
            len(v) != len(u.operations) for v, u in zip(verdicts, batch.units)
        ):
            raise ValueError("verdicts must align with the batch's units and operations")
        self._batch = batch
        self._verdicts = [list(v) for v in verdicts]
        self._violations: list[SequencingViolation] = []
        self._new_tables: set[tuple[int, str]] = set()

    def run(self) -> SequencingResult:
        self._exempt_new_tables()
        self._check_concurrent_isolation()
        self._check_validation_order()
        self._refine_set_not_null()
        return SequencingResult(verdicts=self._verdicts, violations=self._violations)

    def _violation(self, rule_id: str, message: str, a: OperationRef, b: OperationRef) -> None:
        first, second = _ordered(a, b)
        logger.debug(f"{rule_id}: {first} / {second}")
        self._violations.append(SequencingViolation(rule_id, message, first, second))

    # ── 1. New tables ─────────────────────────────────────────────────

    def _exempt_new_tables(self) -> None:
        for ui, unit in enumerate(self._batch.units):
            created: set[str] = set()
            for oi, op in enumerate(unit.operations):
                if isinstance(op, CreateTable):
                    created.add(op.table)
                    self._new_tables.add((ui, op.table))
                    continue
                table = getattr(op, "table", None)
                verdict = self._verdicts[ui][oi]
                if table in created and verdict.rule_id in NEW_TABLE_EXEMPT_RULES:
                    self._verdicts[ui][oi] = verdict.refine(
                        status=Status.SAFE,
                        rule_id="new-table",
                        rationale=(
                            f"{table} is created earlier in this migration, so it is "
                            f"empty and not yet used by running code."
                        ),
                    )

    # ── 2. Concurrent index isolation ─────────────────────────────────

    def _check_concurrent_isolation(self) -> None:
        for ui, unit in enumerate(self._batch.units):
            if len(unit.operations) < 2:
                continue
            concurrent = [oi for oi, op in enumerate(unit.operations) if _is_concurrent_index(op)]
            for ci in concurrent:
                for oi in range(len(unit.operations)):
                    # Report each pair of concurrent operations once
                    if oi == ci or (oi in concurrent and oi < ci):
                        continue
                    self._violation(
                        CONCURRENT_INDEX_ISOLATED,
                        f"{unit.operations[ci].describe()} must be the only operation "
                        f"in {unit.name}; move {unit.operations[oi].describe()} to "
                        f"another migration.",
                        _ref(self._batch, ui, ci),
                        _ref(self._batch, ui, oi),
                    )

    # ── 3. Deferred validation ────────────────────────────────────────

    def _check_validation_order(self) -> None:
        creations: list[tuple[OperationRef, Any]] = []
        validations: list[tuple[OperationRef, Any]] = []
        for ui, unit in enumerate(self._batch.units):
            for oi, op in enumerate(unit.operations):
                ref = _ref(self._batch, ui, oi)
                if isinstance(op, (AddForeignKey, AddCheckConstraint)) and not op.validate:
                    creations.append((ref, op))
                elif isinstance(op, (ValidateForeignKey, ValidateCheckConstraint)):
                    validations.append((ref, op))

        for v_ref, v_op in validations:
            matches = [(c_ref, c_op) for c_ref, c_op in creations if _validates(c_op, v_op)]
            if not matches:
                # Created by an earlier deployment
                continue
            for c_ref, c_op in matches:
                same_unit = c_ref.unit_index == v_ref.unit_index
                if same_unit and (c_ref.unit_index, c_op.table) in self._new_tables:
                    continue
                if same_unit:
                    self._violation(
                        VALIDATION_DEFERRED,
                        f"{v_op.describe()} is in the same migration as "
                        f"{c_op.describe()}; validate in a later migration so the "
                        f"constraint is committed first.",
                        c_ref,
                        v_ref,
                    )
            if all(c_ref > v_ref for c_ref, _ in matches):
                c_ref, c_op = min(matches, key=lambda m: m[0])
                self._violation(
                    VALIDATE_BEFORE_CREATE,
                    f"{v_op.describe()} runs before {c_op.describe()}.",
                    v_ref,
                    c_ref,
                )

    # ── 4. SET NOT NULL after a validated check ───────────────────────

    def _refine_set_not_null(self) -> None:
        validated: set[tuple[str, str]] = set()
        pending: dict[tuple[str, str], str] = {}

        for ui, unit in enumerate(self._batch.units):
            for oi, op in enumerate(unit.operations):
                if isinstance(op, AddCheckConstraint):
                    column = op.not_null_column
                    if column is None:
                        continue
                    if op.validate:
                        validated.add((op.table, column))
                    else:
                        pending[(op.table, op.constraint_name)] = column
                elif isinstance(op, ValidateCheckConstraint):
                    column = pending.pop((op.table, op.name), None)
                    if column is not None:
                        validated.add((op.table, column))
                elif isinstance(op, SetNotNull):
                    verdict = self._verdicts[ui][oi]
                    if verdict.rule_id != PENDING_NOT_NULL_RULE:
                        continue
                    if (op.table, op.column) in validated:
                        self._verdicts[ui][oi] = verdict.refine(
                            status=Status.SAFE,
                            rule_id="set-not-null-after-check",
                            rationale=(
                                f"A validated check ({op.column} IS NOT NULL) precedes "
                                f"this change, so SET NOT NULL on {op.table} skips the "
                                f"full table scan."
                            ),
                        )
                    else:
                        self._verdicts[ui][oi] = verdict.refine(
                            status=Status.UNSAFE,
                            rule_id="set-not-null-scan",
                            rationale=(
                                f"No validated check ({op.column} IS NOT NULL) precedes "
                                f"this change in the batch; full table scan expected "
                                f"on {op.table}."
                            ),
                        )


def sequence(batch: MigrationBatch, verdicts: list[list[Verdict]]) -> SequencingResult:
    """Run all sequencing checks and return refined verdicts plus violations."""
    return Sequencer(batch, verdicts).run()
