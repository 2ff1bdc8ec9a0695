"""Analysis entry point - classify, sequence and aggregate a migration batch."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from migrationguard.config import AnalyzerConfig
from migrationguard.engine import Engine
from migrationguard.locks import DEFAULT_KNOWLEDGE_BASE, LockKnowledgeBase
from migrationguard.migration import MigrationBatch
from migrationguard.report import AnalysisReport, OperationRef, OperationResult, SequencingViolation
from migrationguard.rules import RuleContext, Verdict, classify
from migrationguard.sequencer import sequence

logger = logging.getLogger("migrationguard")


class Analyzer:
    """Reusable analyzer bound to a config and a lock knowledge base.

    Holds no per-run state; one instance can analyze many batches, from
    several threads at once.
    """

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        *,
        knowledge_base: LockKnowledgeBase | None = None,
    ) -> None:
        self._config = config or AnalyzerConfig()
        self._kb = knowledge_base or DEFAULT_KNOWLEDGE_BASE
        self._thresholds = self._config.thresholds()

    @property
    def config(self) -> AnalyzerConfig:
        return self._config

    def classify_batch(self, batch: MigrationBatch, engine: Engine) -> list[list[Verdict]]:
        """First pass: one verdict per operation, each independent of its siblings."""
        verdicts: list[list[Verdict]] = []
        for unit in batch.units:
            ctx = RuleContext(
                engine=engine,
                disable_ddl_transaction=unit.disable_ddl_transaction,
                thresholds=self._thresholds,
            )
            verdicts.append([classify(op, ctx, self._kb) for op in unit.operations])
        return verdicts

    def analyze(self, batch: MigrationBatch, engine: Engine) -> AnalysisReport:
        reported = self._config.reported_units([unit.name for unit in batch.units])
        outcome = sequence(batch, self.classify_batch(batch, engine))

        assured = {ui for ui, unit in enumerate(batch.units) if unit.safety_assured}

        results: list[OperationResult] = []
        for ui, unit in enumerate(batch.units):
            if ui not in reported:
                continue
            for oi, op in enumerate(unit.operations):
                verdict = outcome.verdicts[ui][oi]
                if ui in assured:
                    verdict = verdict.refine(assured=True)
                results.append(OperationResult(OperationRef(ui, oi, unit.name), op, verdict))

        violations: list[SequencingViolation] = []
        for v in outcome.violations:
            units = {v.first.unit_index, v.second.unit_index}
            if not units & reported:
                continue
            if units <= assured:
                v = SequencingViolation(v.rule_id, v.message, v.first, v.second, assured=True)
            violations.append(v)

        report = AnalysisReport(
            engine=engine,
            results=tuple(results),
            violations=tuple(violations),
            fail_on=self._config.fail_on,
        )
        skipped = len(batch.units) - len(reported)
        logger.info(
            f"Analyzed {len(results)} operation(s) in {len(reported)} migration(s) "
            f"for {engine} ({skipped} skipped): worst={report.worst_severity().value}, "
            f"violations={len(violations)}"
        )
        return report


def analyze(
    batch: MigrationBatch,
    engine: Engine,
    config: AnalyzerConfig | None = None,
    *,
    knowledge_base: LockKnowledgeBase | None = None,
) -> AnalysisReport:
    """Analyze one migration batch against one engine."""
    return Analyzer(config, knowledge_base=knowledge_base).analyze(batch, engine)


async def analyze_batches(
    batches: Iterable[MigrationBatch],
    engine: Engine,
    config: AnalyzerConfig | None = None,
    *,
    max_concurrency: int | None = None,
) -> list[AnalysisReport]:
    """Analyze independent batches concurrently on worker threads.

    Reports are returned in input order.
    """
    analyzer = Analyzer(config)
    limit = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def _one(batch: MigrationBatch) -> AnalysisReport:
        if limit is None:
            return await asyncio.to_thread(analyzer.analyze, batch, engine)
        async with limit:
            return await asyncio.to_thread(analyzer.analyze, batch, engine)

    return list(await asyncio.gather(*(_one(b) for b in batches)))


def analyze_batches_sync(
    batches: Iterable[MigrationBatch],
    engine: Engine,
    config: AnalyzerConfig | None = None,
    *,
    max_concurrency: int | None = None,
) -> list[AnalysisReport]:
    """Synchronous wrapper around :func:`analyze_batches`."""
    return asyncio.run(
        analyze_batches(batches, engine, config, max_concurrency=max_concurrency)
    )
