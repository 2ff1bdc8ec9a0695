"""Tests for migrationguard.locks - lock acquisition and the conflict matrix."""

import pytest

from migrationguard.engine import Engine
from migrationguard.locks import (
    POSTGRES_CONFLICTS,
    Blocking,
    LockKnowledgeBase,
    LockMode,
    conflicts,
    locks_required_by,
)


# ── Conflict matrix ──────────────────────────────────────────────────


class TestConflictMatrix:
    def test_symmetric(self):
        for a in LockMode:
            for b in LockMode:
                assert conflicts(a, b) == conflicts(b, a), (a, b)

    def test_access_exclusive_conflicts_with_everything(self):
        for mode in LockMode:
            assert conflicts(LockMode.ACCESS_EXCLUSIVE, mode)

    def test_access_share_only_conflicts_with_access_exclusive(self):
        assert POSTGRES_CONFLICTS[LockMode.ACCESS_SHARE] == frozenset({LockMode.ACCESS_EXCLUSIVE})

    def test_share_update_exclusive_self_conflicts(self):
        assert conflicts(LockMode.SHARE_UPDATE_EXCLUSIVE, LockMode.SHARE_UPDATE_EXCLUSIVE)

    def test_share_does_not_self_conflict(self):
        assert not conflicts(LockMode.SHARE, LockMode.SHARE)

    def test_share_blocks_writes(self):
        assert conflicts(LockMode.SHARE, LockMode.ROW_EXCLUSIVE)

    def test_row_exclusive_compatible_with_itself(self):
        assert not conflicts(LockMode.ROW_EXCLUSIVE, LockMode.ROW_EXCLUSIVE)

    def test_ordering(self):
        assert LockMode.ACCESS_SHARE < LockMode.SHARE < LockMode.ACCESS_EXCLUSIVE

    def test_sql_name(self):
        assert LockMode.SHARE_UPDATE_EXCLUSIVE.sql_name == "SHARE UPDATE EXCLUSIVE"


class TestBlockingModel:
    def test_blocking_conflicts(self):
        assert conflicts(Blocking.BLOCKING, Blocking.NON_BLOCKING)
        assert conflicts(Blocking.NON_BLOCKING, Blocking.BLOCKING)

    def test_non_blocking_compatible(self):
        assert not conflicts(Blocking.NON_BLOCKING, Blocking.NON_BLOCKING)

    def test_mixed_models_rejected(self):
        with pytest.raises(TypeError):
            conflicts(LockMode.SHARE, Blocking.BLOCKING)


# ── Lock acquisition ─────────────────────────────────────────────────


class TestLocksRequiredBy:
    def test_add_column_access_exclusive(self):
        assert locks_required_by("AddColumn", Engine.postgres(12)) == {LockMode.ACCESS_EXCLUSIVE}

    def test_create_index(self):
        assert locks_required_by("CreateIndex", Engine.postgres(12)) == {LockMode.SHARE}

    def test_create_index_concurrently(self):
        locks = locks_required_by("CreateIndex", Engine.postgres(12), concurrently=True)
        assert locks == {LockMode.SHARE_UPDATE_EXCLUSIVE}

    def test_concurrently_falls_back_for_other_kinds(self):
        locks = locks_required_by("AddColumn", Engine.postgres(12), concurrently=True)
        assert locks == {LockMode.ACCESS_EXCLUSIVE}

    def test_validate_foreign_key_takes_two_modes(self):
        locks = locks_required_by("ValidateForeignKey", Engine.postgres(12))
        assert locks == {LockMode.SHARE_UPDATE_EXCLUSIVE, LockMode.ROW_SHARE}

    def test_unknown_kind_assumes_worst(self):
        assert locks_required_by("Vacuum", Engine.postgres(12)) == {LockMode.ACCESS_EXCLUSIVE}
        assert locks_required_by("Vacuum", Engine.mysql("8.0")) == {Blocking.BLOCKING}

    def test_mysql_states(self):
        assert locks_required_by("CreateIndex", Engine.mysql("8.0")) == {Blocking.NON_BLOCKING}
        assert locks_required_by("AlterColumnType", Engine.mariadb("10.5")) == {Blocking.BLOCKING}

    def test_custom_knowledge_base(self):
        kb = LockKnowledgeBase(mysql_blocking={"CreateIndex": Blocking.BLOCKING})
        assert kb.locks_required_by("CreateIndex", Engine.mysql("5.6")) == {Blocking.BLOCKING}


class TestKnowledgeBaseQueries:
    def test_strongest(self):
        kb = LockKnowledgeBase()
        assert kb.strongest({LockMode.ROW_SHARE, LockMode.SHARE_UPDATE_EXCLUSIVE}) is (
            LockMode.SHARE_UPDATE_EXCLUSIVE
        )
        assert kb.strongest([Blocking.NON_BLOCKING, Blocking.BLOCKING]) is Blocking.BLOCKING
        assert kb.strongest([]) is None

    def test_blocks_reads_and_writes(self):
        kb = LockKnowledgeBase()
        assert kb.blocks_reads(LockMode.ACCESS_EXCLUSIVE)
        assert not kb.blocks_reads(LockMode.SHARE)
        assert kb.blocks_writes(LockMode.SHARE)
        assert not kb.blocks_writes(LockMode.SHARE_UPDATE_EXCLUSIVE)
        assert kb.blocks_writes(Blocking.BLOCKING)
        assert not kb.blocks_writes(Blocking.NON_BLOCKING)
