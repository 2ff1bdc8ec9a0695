"""Tests for migrationguard.analyzer - end-to-end analysis of migration batches."""

import logging

import pytest

from migrationguard.analyzer import Analyzer, analyze, analyze_batches, analyze_batches_sync
from migrationguard.config import AnalyzerConfig
from migrationguard.engine import Engine
from migrationguard.exceptions import ConfigurationError, InvalidOperation
from migrationguard.locks import Blocking, LockKnowledgeBase
from migrationguard.migration import MigrationBatch, MigrationUnit
from migrationguard.operations import (
    AddCheckConstraint,
    AddColumn,
    AddColumnWithDefault,
    AddForeignKey,
    AlterColumnDefault,
    AlterColumnType,
    CreateIndex,
    RemoveColumn,
    SetNotNull,
    ValidateCheckConstraint,
    ValidateForeignKey,
    create_operation,
)
from migrationguard.rules import Remediation, Status


def batch(*units, **flags):
    """One unit per operation list, named 0001_step, 0002_step, ..."""
    return MigrationBatch(
        units=tuple(
            MigrationUnit(name=f"{i:04d}_step", operations=tuple(ops), **flags)
            for i, ops in enumerate(units, start=1)
        )
    )


# ── Core properties ──────────────────────────────────────────────────


class TestProperties:
    def test_idempotent(self, pg12):
        b = batch(
            [AddColumn("users", "approved", "boolean"), CreateIndex("users", ["approved"])],
            [AddForeignKey("orders", "users", validate=False), ValidateForeignKey("orders", to_table="users")],
            [SetNotNull("users", "approved")],
        )
        assert analyze(b, pg12).to_json() == analyze(b, pg12).to_json()

    def test_concurrent_index_alone_without_transaction(self, pg12):
        b = batch(
            [CreateIndex("users", ["email"], concurrently=True)],
            disable_ddl_transaction=True,
        )
        report = analyze(b, pg12)
        assert report.results[0].status is Status.SAFE
        assert report.violations == ()
        assert not report.has_blocking_issues()

    def test_concurrent_index_inside_transaction(self, pg12):
        report = analyze(batch([CreateIndex("users", ["email"], concurrently=True)]), pg12)
        assert report.results[0].status is Status.UNSAFE

    def test_unvalidated_foreign_key(self, pg12):
        report = analyze(
            batch([AddForeignKey("orders", "users", validate=False)]), pg12
        )
        verdict = report.results[0].verdict
        assert verdict.status is Status.CONDITIONALLY_SAFE
        assert verdict.remediation is Remediation.SPLIT_INTO_PHASES
        assert report.violations == ()

    def test_unvalidated_foreign_key_validated_in_same_unit(self, pg12):
        report = analyze(
            batch([AddForeignKey("orders", "users", validate=False), ValidateForeignKey("orders", to_table="users")]),
            pg12,
        )
        assert [v.rule_id for v in report.violations] == ["validation-must-be-deferred"]
        assert report.has_blocking_issues()

    def test_decimal_precision_vs_scale(self):
        engine = Engine.postgres("9.2")
        safe = analyze(batch([AlterColumnType("orders", "total", "decimal(8,2)", "decimal(10,2)")]), engine)
        unsafe = analyze(batch([AlterColumnType("orders", "total", "decimal(8,2)", "decimal(8,4)")]), engine)
        assert safe.results[0].status is Status.SAFE
        assert unsafe.results[0].status is Status.UNSAFE

    def test_add_column_then_default(self, pg12):
        report = analyze(
            batch(
                [AddColumn("users", "approved", "boolean")],
                [AlterColumnDefault("users", "approved", "false")],
            ),
            pg12,
        )
        assert [r.status for r in report] == [Status.SAFE, Status.SAFE]
        assert report.violations == ()

    def test_add_column_with_default_on_postgres_10(self, pg10):
        report = analyze(batch([AddColumnWithDefault("users", "approved", "boolean", "false")]), pg10)
        verdict = report.results[0].verdict
        assert verdict.status is Status.UNSAFE
        assert verdict.remediation is Remediation.ADD_THEN_SET_DEFAULT_SEPARATELY

    def test_add_column_with_default_on_postgres_11(self):
        report = analyze(
            batch([AddColumnWithDefault("users", "approved", "boolean", "false")]),
            Engine.postgres(11),
        )
        assert report.results[0].status is Status.SAFE

    def test_check_constraint_validated_in_same_unit(self, pg12):
        report = analyze(
            batch([
                AddCheckConstraint("users", "age > 0", name="chk_age", validate=False),
                ValidateCheckConstraint("users", "chk_age"),
            ]),
            pg12,
        )
        assert [v.rule_id for v in report.violations] == ["validation-must-be-deferred"]

    def test_worst_severity(self, pg12):
        report = analyze(
            batch([AddColumn("users", "approved", "boolean"), CreateIndex("users", ["approved"])]),
            pg12,
        )
        assert [r.status for r in report] == [Status.SAFE, Status.UNSAFE]
        assert report.worst_severity() is Status.UNSAFE

    def test_entirely_unsafe_batch_completes(self, pg10):
        report = analyze(
            batch(
                [CreateIndex("users", ["email"]), AlterColumnType("users", "id", "integer", "bigint")],
                [SetNotNull("users", "email")],
            ),
            pg10,
        )
        assert len(report.unsafe_operations()) == 3


# ── Phased migrations ────────────────────────────────────────────────


class TestPhasedMigrations:
    def test_constraint_first_not_null(self, pg12):
        report = analyze(
            batch(
                [AddCheckConstraint("users", "email IS NOT NULL", name="chk_email", validate=False)],
                [ValidateCheckConstraint("users", "chk_email")],
                [SetNotNull("users", "email")],
            ),
            pg12,
        )
        assert report.worst_severity() is Status.CONDITIONALLY_SAFE
        assert report.results[-1].verdict.rule_id == "set-not-null-after-check"
        assert not report.has_blocking_issues()

    def test_mysql_engine(self, mysql8):
        report = analyze(
            batch(
                [AddColumnWithDefault("users", "approved", "boolean", "false")],
                [CreateIndex("users", ["approved"])],
            ),
            mysql8,
        )
        assert [r.status for r in report] == [Status.SAFE, Status.SAFE]
        assert report.results[1].verdict.lock_mode is Blocking.NON_BLOCKING


# ── Configuration ────────────────────────────────────────────────────


class TestConfiguration:
    def test_start_after_skips_applied_units(self, pg12):
        b = batch([CreateIndex("users", ["email"])], [AddColumn("users", "x", "text")])
        report = analyze(b, pg12, AnalyzerConfig(start_after="0001_step"))
        assert [r.ref.unit_name for r in report] == ["0002_step"]
        assert report.results[0].ref.unit_index == 1
        assert not report.has_blocking_issues()

    def test_start_after_keeps_sequencing_context(self, pg12):
        b = batch(
            [AddCheckConstraint("users", "email IS NOT NULL")],
            [SetNotNull("users", "email")],
        )
        report = analyze(b, pg12, AnalyzerConfig(start_after="0001_step"))
        assert report.results[0].status is Status.SAFE

    def test_start_after_drops_violations_in_applied_units(self, pg12):
        b = batch(
            [AddForeignKey("orders", "users", validate=False), ValidateForeignKey("orders", to_table="users")],
            [AddColumn("users", "x", "text")],
        )
        report = analyze(b, pg12, AnalyzerConfig(start_after="0001_step"))
        assert report.violations == ()

    def test_start_after_unpadded_names(self, pg12):
        b = MigrationBatch.of(
            MigrationUnit(name="9_step", operations=(AddColumn("users", "x", "text"),)),
            MigrationUnit(name="10_step", operations=(CreateIndex("users", ["email"]),)),
        )
        report = analyze(b, pg12, AnalyzerConfig(start_after="9_step"))
        assert [r.ref.unit_name for r in report] == ["10_step"]
        assert report.has_blocking_issues()

    def test_start_after_unknown_unit(self, pg12):
        b = batch([AddColumn("users", "x", "text")])
        with pytest.raises(ConfigurationError, match="0009_step"):
            analyze(b, pg12, AnalyzerConfig(start_after="0009_step"))

    def test_fail_on_conditionally_safe(self, pg12):
        b = batch([RemoveColumn("users", "legacy")])
        assert not analyze(b, pg12).has_blocking_issues()
        config = AnalyzerConfig(fail_on="conditionally_safe")
        assert analyze(b, pg12, config).has_blocking_issues()

    def test_safety_assured(self, pg12):
        b = batch([CreateIndex("users", ["email"])], safety_assured=True)
        report = analyze(b, pg12)
        assert report.results[0].verdict.assured
        assert report.results[0].status is Status.UNSAFE
        assert not report.has_blocking_issues()

    def test_safety_assured_violation(self, pg12):
        b = batch(
            [CreateIndex("users", ["email"], concurrently=True), AddColumn("users", "x", "text")],
            safety_assured=True,
            disable_ddl_transaction=True,
        )
        report = analyze(b, pg12)
        assert len(report.violations) == 1
        assert report.violations[0].assured
        assert not report.has_blocking_issues()

    def test_threshold_override(self, pg12):
        config = AnalyzerConfig(version_thresholds={"fast_column_default": {"postgres": "13"}})
        b = batch([AddColumnWithDefault("users", "approved", "boolean", "false")])
        assert analyze(b, pg12, config).results[0].status is Status.UNSAFE

    def test_custom_knowledge_base(self, mysql8):
        kb = LockKnowledgeBase(mysql_blocking={"CreateIndex": Blocking.BLOCKING})
        report = analyze(batch([CreateIndex("users", ["email"])]), mysql8, knowledge_base=kb)
        assert report.results[0].verdict.lock_mode is Blocking.BLOCKING


# ── Errors and logging ───────────────────────────────────────────────


class TestErrors:
    def test_invalid_operation_surfaces(self):
        with pytest.raises(InvalidOperation):
            batch([create_operation("CreateIndex", table="users", columns=["a"], validate=True)])

    def test_non_operation_in_unit(self):
        with pytest.raises(InvalidOperation, match="non-operation"):
            MigrationUnit(name="0001_bad", operations=("ALTER TABLE users",))

    @pytest.mark.parametrize(
        "flag", ["disable_ddl_transaction", "disable_migration_lock", "safety_assured"]
    )
    def test_unit_flag_must_be_bool(self, flag):
        with pytest.raises(InvalidOperation, match="must be a bool") as exc:
            MigrationUnit(name="0001_bad", **{flag: "false"})
        assert exc.value.field == flag

    def test_empty_batch(self, pg12):
        report = analyze(MigrationBatch(), pg12)
        assert len(report) == 0
        assert report.worst_severity() is Status.SAFE

    def test_summary_logged(self, pg12, caplog):
        with caplog.at_level(logging.INFO, logger="migrationguard"):
            analyze(batch([AddColumn("users", "x", "text")]), pg12)
        assert "Analyzed 1 operation(s)" in caplog.text


# ── Reuse and concurrency ────────────────────────────────────────────


class TestAnalyzer:
    def test_reusable(self, pg12, mysql8):
        analyzer = Analyzer()
        b = batch([CreateIndex("users", ["email"])])
        assert analyzer.analyze(b, pg12).results[0].status is Status.UNSAFE
        assert analyzer.analyze(b, mysql8).results[0].status is Status.SAFE

    def test_config_property(self):
        config = AnalyzerConfig(start_after="0003_x")
        assert Analyzer(config).config is config

    def test_classify_batch_shape(self, pg12):
        b = batch([AddColumn("users", "x", "text"), AddColumn("users", "y", "text")], [])
        verdicts = Analyzer().classify_batch(b, pg12)
        assert [len(v) for v in verdicts] == [2, 0]


class TestAnalyzeBatches:
    @pytest.mark.asyncio
    async def test_reports_in_input_order(self, pg12):
        batches = [
            batch([CreateIndex("users", ["email"])]),
            batch([AddColumn("users", "x", "text")]),
            batch([RemoveColumn("users", "legacy")]),
        ]
        reports = await analyze_batches(batches, pg12, max_concurrency=2)
        assert [r.worst_severity() for r in reports] == [
            Status.UNSAFE,
            Status.SAFE,
            Status.CONDITIONALLY_SAFE,
        ]

    @pytest.mark.asyncio
    async def test_matches_sequential(self, pg12):
        batches = [batch([SetNotNull("users", "email")]), batch([AddColumn("users", "x", "json")])]
        reports = await analyze_batches(batches, pg12)
        assert [r.to_json() for r in reports] == [analyze(b, pg12).to_json() for b in batches]

    def test_sync_wrapper(self, pg12):
        reports = analyze_batches_sync([batch([AddColumn("users", "x", "text")])], pg12)
        assert len(reports) == 1
        assert reports[0].worst_severity() is Status.SAFE
