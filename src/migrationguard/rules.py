"""Safety rule engine - classify one operation against one engine.

Rules are data: each :class:`Rule` names the operation kinds and engines it
applies to, a predicate over the operation and its context, and the verdict
it produces. For every operation the first matching rule for its kind wins,
and every kind ends with a catch-all rule, so classification never depends
on sibling operations or evaluation order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Mapping

from migrationguard.engine import Engine, EngineKind
from migrationguard.exceptions import MigrationGuardError, UnsupportedEngineVersion
from migrationguard.locks import DEFAULT_KNOWLEDGE_BASE, Lock, LockKnowledgeBase, LockMode
from migrationguard.operations import Operation
from migrationguard.type_changes import type_change_requirement
from migrationguard.types import is_json

logger = logging.getLogger("migrationguard")


class Status(str, Enum):
    """Verdict status, ordered Safe < ConditionallySafe < Unsafe."""

    SAFE = "safe"
    CONDITIONALLY_SAFE = "conditionally_safe"
    UNSAFE = "unsafe"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {Status.SAFE: 0, Status.CONDITIONALLY_SAFE: 1, Status.UNSAFE: 2}


class Remediation(str, Enum):
    """Named strategy for making an unsafe change safe."""

    SPLIT_INTO_PHASES = "split_into_phases"
    DISABLE_VALIDATION_THEN_VALIDATE_SEPARATELY = "disable_validation_then_validate_separately"
    USE_CONCURRENT_INDEX = "use_concurrent_index"
    ADD_THEN_SET_DEFAULT_SEPARATELY = "add_then_set_default_separately"
    APPLICATION_CODE_FIRST = "application_code_first"
    USE_JSONB = "use_jsonb"
    NONE = "none"


def _lock_to_json(lock: Lock | None) -> str | None:
    if lock is None:
        return None
    if isinstance(lock, LockMode):
        return lock.name.lower()
    return lock.value


@dataclass(frozen=True)
class Verdict:
    """Classification of a single operation."""

    status: Status
    rationale: str
    remediation: Remediation = Remediation.NONE
    lock_mode: Lock | None = None
    rule_id: str = ""
    assured: bool = False

    def refine(self, **changes: Any) -> Verdict:
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "rationale": self.rationale,
            "remediation": self.remediation.value,
            "lock_mode": _lock_to_json(self.lock_mode),
            "rule_id": self.rule_id,
            "assured": self.assured,
        }


# ── Version thresholds ────────────────────────────────────────────────

_PG = EngineKind.POSTGRES
_MY = EngineKind.MYSQL
_MARIA = EngineKind.MARIADB

VERSION_THRESHOLDS: dict[str, dict[EngineKind, tuple[int, ...]]] = {
    # Non-volatile defaults are stored in the catalog instead of rewriting rows
    "fast_column_default": {_PG: (11,), _MY: (8, 0, 12), _MARIA: (10, 3, 2)},
    # Type changes that skip the table and index rebuild
    "binary_coercible_change": {_PG: (9, 2)},
    "decimal_precision_increase": {_PG: (9, 2)},
    "timestamptz_conversion": {_PG: (12,)},
    "inplace_varchar_extension": {_MY: (5, 7), _MARIA: (10, 2, 2)},
    # SET NOT NULL uses a validated IS NOT NULL check instead of scanning
    "not_null_from_check": {_PG: (12,)},
}


@dataclass(frozen=True)
class RuleContext:
    """Everything a rule may look at besides the operation itself."""

    engine: Engine
    disable_ddl_transaction: bool = False
    thresholds: Mapping[str, Mapping[EngineKind, tuple[int, ...]]] = field(
        default_factory=lambda: VERSION_THRESHOLDS
    )

    def at_least(self, feature: str) -> bool:
        """True if the engine version reaches the threshold for ``feature``.

        Raises UnsupportedEngineVersion when the threshold or the engine
        version is unknown.
        """
        threshold = self.thresholds.get(feature, {}).get(self.engine.kind)
        if threshold is None:
            raise UnsupportedEngineVersion(
                f"No {feature} threshold for {self.engine.kind.value}",
                engine=self.engine,
                feature=feature,
            )
        if self.engine.version is None:
            raise UnsupportedEngineVersion(
                f"No version given for {self.engine.kind.value}; {feature} unknown",
                engine=self.engine,
                feature=feature,
            )
        return self.engine.at_least(threshold)


# ── Rule table ────────────────────────────────────────────────────────


def _always(op: Any, ctx: RuleContext) -> bool:
    return True


@dataclass(frozen=True)
class Rule:
    """(kinds, engine predicate, flag predicate) -> verdict template."""

    rule_id: str
    kinds: frozenset[str]
    status: Status
    rationale: str
    remediation: Remediation = Remediation.NONE
    engines: frozenset[EngineKind] | None = None
    when: Callable[[Any, RuleContext], bool] = _always

    def applies_to(self, op: Any, ctx: RuleContext) -> bool:
        if self.engines is not None and ctx.engine.kind not in self.engines:
            return False
        return self.when(op, ctx)

    def verdict(self, op: Any, ctx: RuleContext, lock: Lock | None) -> Verdict:
        rationale = self.rationale.format(engine=ctx.engine.label(), **op.template_fields())
        return Verdict(
            status=self.status,
            rationale=rationale,
            remediation=self.remediation,
            lock_mode=lock,
            rule_id=self.rule_id,
        )


def _kinds(*names: str) -> frozenset[str]:
    return frozenset(names)


POSTGRES_ONLY = frozenset({_PG})

_S = Status
_R = Remediation


def _safe_type_change(op: Any, ctx: RuleContext) -> bool:
    allowed, feature = type_change_requirement(op.from_type, op.to_type, ctx.engine)
    if not allowed:
        return False
    return feature is None or ctx.at_least(feature)


RULES: tuple[Rule, ...] = (
    # Columns
    Rule(
        "add-json-column",
        _kinds("AddColumn", "AddColumnWithDefault"),
        _S.UNSAFE,
        "Postgres has no equality operator for json, so existing SELECT DISTINCT "
        "and UNION queries on {table} break once {column} exists. Use jsonb.",
        _R.USE_JSONB,
        engines=POSTGRES_ONLY,
        when=lambda op, ctx: is_json(op.column_type),
    ),
    Rule(
        "add-column",
        _kinds("AddColumn"),
        _S.SAFE,
        "Adding nullable column {column} without a default only updates the catalog.",
    ),
    Rule(
        "add-column-volatile-default",
        _kinds("AddColumnWithDefault"),
        _S.UNSAFE,
        "The default {default} is volatile, so every existing row of {table} is "
        "rewritten while writes are blocked. Add {column} without a default, set "
        "the default separately and backfill in batches.",
        _R.ADD_THEN_SET_DEFAULT_SEPARATELY,
        when=lambda op, ctx: op.has_volatile_default,
    ),
    Rule(
        "add-column-default-rewrite",
        _kinds("AddColumnWithDefault"),
        _S.UNSAFE,
        "On {engine}, adding {column} with a default rewrites every row of {table} "
        "while writes are blocked. Add the column without a default, set the "
        "default separately and backfill in batches.",
        _R.ADD_THEN_SET_DEFAULT_SEPARATELY,
        when=lambda op, ctx: not ctx.at_least("fast_column_default"),
    ),
    Rule(
        "add-column-default",
        _kinds("AddColumnWithDefault"),
        _S.SAFE,
        "On {engine}, a non-volatile default for {column} is stored in the catalog "
        "without rewriting {table}.",
    ),
    Rule(
        "add-json-column",
        _kinds("AddJsonColumn"),
        _S.UNSAFE,
        "Postgres has no equality operator for json, so existing SELECT DISTINCT "
        "and UNION queries on {table} break once {column} exists. Use jsonb.",
        _R.USE_JSONB,
        engines=POSTGRES_ONLY,
    ),
    Rule(
        "add-json-column",
        _kinds("AddJsonColumn"),
        _S.SAFE,
        "{engine} has a single JSON type; adding {column} is an online change.",
    ),
    Rule(
        "change-column-type-safe",
        _kinds("AlterColumnType"),
        _S.SAFE,
        "Changing {column} from {from_type} to {to_type} does not rewrite {table} "
        "or its indexes on {engine}.",
        when=_safe_type_change,
    ),
    Rule(
        "change-column-type",
        _kinds("AlterColumnType"),
        _S.UNSAFE,
        "Changing {column} from {from_type} to {to_type} rewrites {table} while "
        "blocking reads and writes. Add a new column, write to both, backfill, "
        "move reads over, then drop the old column.",
        _R.SPLIT_INTO_PHASES,
    ),
    Rule(
        "change-column-default-with-type",
        _kinds("AlterColumnDefault"),
        _S.UNSAFE,
        "The default change on {column} is bundled with a redefinition as "
        "{with_type}, which can rewrite {table}. Isolate the default change in "
        "its own statement.",
        _R.SPLIT_INTO_PHASES,
        when=lambda op, ctx: op.bundles_type_change,
    ),
    Rule(
        "change-column-default",
        _kinds("AlterColumnDefault"),
        _S.SAFE,
        "Changing the default of {column} only affects future inserts.",
    ),
    Rule(
        "remove-column",
        _kinds("RemoveColumn"),
        _S.CONDITIONALLY_SAFE,
        "Running application code may still reference {columns} on {table}. Deploy "
        "code that ignores the column(s) first; that deployment order is outside "
        "the migration and cannot be verified here.",
        _R.APPLICATION_CODE_FIRST,
    ),
    Rule(
        "rename-column",
        _kinds("RenameColumn"),
        _S.CONDITIONALLY_SAFE,
        "Running application code still uses {table}.{column}. Renaming to "
        "{new_name} needs coordinated code changes (new column, dual writes or a "
        "view) deployed outside the migration; this cannot be verified here.",
        _R.APPLICATION_CODE_FIRST,
    ),
    Rule(
        "set-not-null",
        _kinds("SetNotNull"),
        _S.CONDITIONALLY_SAFE,
        "Constraint-first: {column} IS NOT NULL is added as an unvalidated check "
        "and must be validated in a separate migration before NOT NULL is set.",
        _R.DISABLE_VALIDATION_THEN_VALIDATE_SEPARATELY,
        when=lambda op, ctx: not op.validate,
    ),
    Rule(
        "set-not-null-needs-check",
        _kinds("SetNotNull"),
        _S.CONDITIONALLY_SAFE,
        "On {engine}, SET NOT NULL on {column} skips the full scan of {table} only "
        "if a validated check constraint ({column} IS NOT NULL) already exists.",
        _R.DISABLE_VALIDATION_THEN_VALIDATE_SEPARATELY,
        engines=POSTGRES_ONLY,
        when=lambda op, ctx: ctx.at_least("not_null_from_check"),
    ),
    Rule(
        "set-not-null-scan",
        _kinds("SetNotNull"),
        _S.UNSAFE,
        "Setting NOT NULL on {column} scans {table} under an ACCESS EXCLUSIVE lock. "
        "Add an unvalidated {column} IS NOT NULL check and validate it separately.",
        _R.DISABLE_VALIDATION_THEN_VALIDATE_SEPARATELY,
        engines=POSTGRES_ONLY,
    ),
    Rule(
        "set-not-null-copy",
        _kinds("SetNotNull"),
        _S.UNSAFE,
        "Setting NOT NULL on {column} copies {table} while blocking writes. Backfill "
        "first and apply the change with an online schema change tool.",
        _R.SPLIT_INTO_PHASES,
    ),
    # Tables
    Rule(
        "create-table-force",
        _kinds("CreateTable"),
        _S.UNSAFE,
        "force drops the existing {table} and its data before recreating it.",
        _R.SPLIT_INTO_PHASES,
        when=lambda op, ctx: op.force,
    ),
    Rule(
        "create-table",
        _kinds("CreateTable"),
        _S.SAFE,
        "Creating {table} does not touch existing data.",
    ),
    Rule(
        "rename-table",
        _kinds("RenameTable"),
        _S.CONDITIONALLY_SAFE,
        "Running application code still queries {table}. Renaming it to {new_name} "
        "needs code that handles both names deployed first; this ordering is "
        "outside the migration and cannot be verified here.",
        _R.APPLICATION_CODE_FIRST,
    ),
    # Indexes
    Rule(
        "create-index-concurrently",
        _kinds("CreateIndex"),
        _S.SAFE,
        "CONCURRENTLY builds the index on {table} without blocking writes.",
        engines=POSTGRES_ONLY,
        when=lambda op, ctx: op.concurrently and ctx.disable_ddl_transaction,
    ),
    Rule(
        "concurrent-index-in-transaction",
        _kinds("CreateIndex", "RemoveIndex"),
        _S.UNSAFE,
        "CONCURRENTLY requires disabling the DDL transaction.",
        _R.USE_CONCURRENT_INDEX,
        engines=POSTGRES_ONLY,
        when=lambda op, ctx: op.concurrently and not ctx.disable_ddl_transaction,
    ),
    Rule(
        "create-index",
        _kinds("CreateIndex"),
        _S.UNSAFE,
        "Building an index takes a SHARE lock on {table} and blocks writes until "
        "it finishes. Create it CONCURRENTLY in its own migration.",
        _R.USE_CONCURRENT_INDEX,
        engines=POSTGRES_ONLY,
    ),
    Rule(
        "create-index",
        _kinds("CreateIndex"),
        _S.SAFE,
        "{engine} builds the index on {table} online without blocking writes.",
    ),
    Rule(
        "remove-index-concurrently",
        _kinds("RemoveIndex"),
        _S.SAFE,
        "CONCURRENTLY drops the index without blocking queries on {table}.",
        engines=POSTGRES_ONLY,
        when=lambda op, ctx: op.concurrently,
    ),
    Rule(
        "remove-index",
        _kinds("RemoveIndex"),
        _S.UNSAFE,
        "Dropping an index takes an ACCESS EXCLUSIVE lock on {table}, which waits "
        "behind and then blocks all queries. Drop it CONCURRENTLY.",
        _R.USE_CONCURRENT_INDEX,
        engines=POSTGRES_ONLY,
    ),
    Rule(
        "remove-index",
        _kinds("RemoveIndex"),
        _S.SAFE,
        "{engine} drops the index from {table} as a metadata change.",
    ),
    # Constraints
    Rule(
        "add-foreign-key-not-valid",
        _kinds("AddForeignKey"),
        _S.CONDITIONALLY_SAFE,
        "Without validation the foreign key from {table} to {to_table} only checks "
        "new writes. Validate it in a later migration.",
        _R.SPLIT_INTO_PHASES,
        when=lambda op, ctx: not op.validate,
    ),
    Rule(
        "add-foreign-key",
        _kinds("AddForeignKey"),
        _S.UNSAFE,
        "Adding a validated foreign key blocks writes on both {table} and "
        "{to_table} while existing rows are checked. Add it without validation "
        "and validate it in a separate migration.",
        _R.SPLIT_INTO_PHASES,
    ),
    Rule(
        "validate-foreign-key",
        _kinds("ValidateForeignKey"),
        _S.SAFE,
        "Validation takes a SHARE UPDATE EXCLUSIVE lock on {table}, which allows "
        "reads and writes.",
    ),
    Rule(
        "add-check-constraint-not-valid",
        _kinds("AddCheckConstraint"),
        _S.CONDITIONALLY_SAFE,
        "Without validation the check on {table} only applies to new writes. "
        "Validate it in a later migration.",
        _R.DISABLE_VALIDATION_THEN_VALIDATE_SEPARATELY,
        when=lambda op, ctx: not op.validate,
    ),
    Rule(
        "add-check-constraint",
        _kinds("AddCheckConstraint"),
        _S.UNSAFE,
        "Adding a validated check constraint scans {table} while blocking reads "
        "and writes. Add it without validation and validate it separately.",
        _R.DISABLE_VALIDATION_THEN_VALIDATE_SEPARATELY,
    ),
    Rule(
        "validate-check-constraint",
        _kinds("ValidateCheckConstraint"),
        _S.SAFE,
        "Validation takes a SHARE UPDATE EXCLUSIVE lock on {table}, which allows "
        "reads and writes.",
    ),
    Rule(
        "add-unique-constraint-using-index",
        _kinds("AddUniqueConstraint"),
        _S.SAFE,
        "The constraint reuses the existing index {using_index} on {table}.",
        engines=POSTGRES_ONLY,
        when=lambda op, ctx: bool(op.using_index),
    ),
    Rule(
        "add-unique-constraint",
        _kinds("AddUniqueConstraint"),
        _S.UNSAFE,
        "Adding a unique constraint builds its index on {table} while blocking "
        "reads and writes. Create a unique index CONCURRENTLY, then add the "
        "constraint USING INDEX.",
        _R.USE_CONCURRENT_INDEX,
        engines=POSTGRES_ONLY,
    ),
    Rule(
        "add-unique-constraint",
        _kinds("AddUniqueConstraint"),
        _S.SAFE,
        "{engine} builds the unique index on {table} online.",
    ),
    # Escape hatch
    Rule(
        "execute-sql",
        _kinds("ExecuteSql"),
        _S.CONDITIONALLY_SAFE,
        "Raw SQL cannot be analyzed; review its locking behavior manually.",
    ),
)


def _index_rules(rules: tuple[Rule, ...]) -> dict[str, tuple[Rule, ...]]:
    by_kind: dict[str, list[Rule]] = {}
    for rule in rules:
        for kind in sorted(rule.kinds):
            by_kind.setdefault(kind, []).append(rule)
    return {kind: tuple(items) for kind, items in by_kind.items()}


RULES_BY_KIND: dict[str, tuple[Rule, ...]] = _index_rules(RULES)


def _lock_for(op: Any, ctx: RuleContext, kb: LockKnowledgeBase) -> Lock | None:
    locks = kb.locks_required_by(
        op.kind, ctx.engine, concurrently=getattr(op, "concurrently", False)
    )
    return kb.strongest(locks)


def classify(
    op: Operation,
    ctx: RuleContext,
    knowledge_base: LockKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
    *,
    rules: Mapping[str, tuple[Rule, ...]] | None = None,
) -> Verdict:
    """Produce exactly one verdict for ``op`` on ``ctx.engine``."""
    table = RULES_BY_KIND if rules is None else rules
    lock = _lock_for(op, ctx, knowledge_base)

    for rule in table.get(op.kind, ()):
        try:
            matched = rule.applies_to(op, ctx)
        except UnsupportedEngineVersion as exc:
            logger.debug(f"{op.describe()}: {exc}")
            return Verdict(
                status=Status.CONDITIONALLY_SAFE,
                rationale=f"unknown engine behavior: {exc}",
                lock_mode=lock,
                rule_id="unknown-engine-behavior",
            )
        if matched:
            verdict = rule.verdict(op, ctx, lock)
            logger.debug(f"{op.describe()}: {verdict.status.value} ({rule.rule_id})")
            return verdict

    raise MigrationGuardError(f"No rule covers operation kind {op.kind!r}")


__all__ = [
    "Remediation",
    "Rule",
    "RuleContext",
    "RULES",
    "RULES_BY_KIND",
    "Status",
    "VERSION_THRESHOLDS",
    "Verdict",
    "classify",
]
