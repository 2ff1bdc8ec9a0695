"""Lock knowledge base - lock modes taken by each operation and how they conflict.

Postgres locks follow the table-level lock conflict matrix from the
Postgres manual ("Explicit Locking"). MySQL and MariaDB do not document
fine-grained DDL lock modes, so they are modeled with two states: the
operation either blocks concurrent writes or it does not.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Iterable, Mapping, Union

from migrationguard.engine import Engine, EngineKind


class LockMode(IntEnum):
    """Postgres table lock modes, ordered by exclusivity."""

    ACCESS_SHARE = 1
    ROW_SHARE = 2
    ROW_EXCLUSIVE = 3
    SHARE_UPDATE_EXCLUSIVE = 4
    SHARE = 5
    SHARE_ROW_EXCLUSIVE = 6
    EXCLUSIVE = 7
    ACCESS_EXCLUSIVE = 8

    @property
    def sql_name(self) -> str:
        return self.name.replace("_", " ")


class Blocking(str, Enum):
    """Two-state lock model for MySQL-family engines."""

    BLOCKING = "blocking"
    NON_BLOCKING = "non_blocking"


Lock = Union[LockMode, Blocking]

_L = LockMode

# Each mode -> the modes it conflicts with. Symmetric by construction.
POSTGRES_CONFLICTS: Mapping[LockMode, frozenset[LockMode]] = {
    _L.ACCESS_SHARE: frozenset({_L.ACCESS_EXCLUSIVE}),
    _L.ROW_SHARE: frozenset({_L.EXCLUSIVE, _L.ACCESS_EXCLUSIVE}),
    _L.ROW_EXCLUSIVE: frozenset({
        _L.SHARE, _L.SHARE_ROW_EXCLUSIVE, _L.EXCLUSIVE, _L.ACCESS_EXCLUSIVE,
    }),
    _L.SHARE_UPDATE_EXCLUSIVE: frozenset({
        _L.SHARE_UPDATE_EXCLUSIVE, _L.SHARE, _L.SHARE_ROW_EXCLUSIVE,
        _L.EXCLUSIVE, _L.ACCESS_EXCLUSIVE,
    }),
    _L.SHARE: frozenset({
        _L.ROW_EXCLUSIVE, _L.SHARE_UPDATE_EXCLUSIVE, _L.SHARE_ROW_EXCLUSIVE,
        _L.EXCLUSIVE, _L.ACCESS_EXCLUSIVE,
    }),
    _L.SHARE_ROW_EXCLUSIVE: frozenset({
        _L.ROW_EXCLUSIVE, _L.SHARE_UPDATE_EXCLUSIVE, _L.SHARE,
        _L.SHARE_ROW_EXCLUSIVE, _L.EXCLUSIVE, _L.ACCESS_EXCLUSIVE,
    }),
    _L.EXCLUSIVE: frozenset({
        _L.ROW_SHARE, _L.ROW_EXCLUSIVE, _L.SHARE_UPDATE_EXCLUSIVE, _L.SHARE,
        _L.SHARE_ROW_EXCLUSIVE, _L.EXCLUSIVE, _L.ACCESS_EXCLUSIVE,
    }),
    _L.ACCESS_EXCLUSIVE: frozenset(LockMode),
}

# (kind, concurrently) -> locks taken on Postgres
POSTGRES_LOCKS: Mapping[tuple[str, bool], frozenset[LockMode]] = {
    ("AddColumn", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("AddColumnWithDefault", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("AddJsonColumn", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("AlterColumnType", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("AlterColumnDefault", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("RemoveColumn", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("RenameColumn", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("SetNotNull", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("CreateTable", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("RenameTable", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("CreateIndex", False): frozenset({_L.SHARE}),
    ("CreateIndex", True): frozenset({_L.SHARE_UPDATE_EXCLUSIVE}),
    ("RemoveIndex", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("RemoveIndex", True): frozenset({_L.SHARE_UPDATE_EXCLUSIVE}),
    # Taken on both the referencing and the referenced table
    ("AddForeignKey", False): frozenset({_L.SHARE_ROW_EXCLUSIVE}),
    ("ValidateForeignKey", False): frozenset({_L.SHARE_UPDATE_EXCLUSIVE, _L.ROW_SHARE}),
    ("AddCheckConstraint", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    ("ValidateCheckConstraint", False): frozenset({_L.SHARE_UPDATE_EXCLUSIVE}),
    ("AddUniqueConstraint", False): frozenset({_L.ACCESS_EXCLUSIVE}),
    # Unknown statement: assume the worst
    ("ExecuteSql", False): frozenset({_L.ACCESS_EXCLUSIVE}),
}

_B = Blocking

# Online DDL behavior (ALGORITHM=INSTANT/INPLACE, LOCK=NONE) for InnoDB
MYSQL_BLOCKING: Mapping[str, Blocking] = {
    "AddColumn": _B.NON_BLOCKING,
    "AddColumnWithDefault": _B.NON_BLOCKING,
    "AddJsonColumn": _B.NON_BLOCKING,
    "AlterColumnType": _B.BLOCKING,
    "AlterColumnDefault": _B.NON_BLOCKING,
    "RemoveColumn": _B.NON_BLOCKING,
    "RenameColumn": _B.NON_BLOCKING,
    "SetNotNull": _B.BLOCKING,
    "CreateTable": _B.NON_BLOCKING,
    "RenameTable": _B.NON_BLOCKING,
    "CreateIndex": _B.NON_BLOCKING,
    "RemoveIndex": _B.NON_BLOCKING,
    "AddForeignKey": _B.BLOCKING,
    "ValidateForeignKey": _B.NON_BLOCKING,
    "AddCheckConstraint": _B.BLOCKING,
    "ValidateCheckConstraint": _B.NON_BLOCKING,
    "AddUniqueConstraint": _B.NON_BLOCKING,
    "ExecuteSql": _B.BLOCKING,
}


class LockKnowledgeBase:
    """Immutable lookup of lock acquisition and lock conflicts.

    Built once and shared read-only; pass a custom instance to the analyzer
    to override entries.
    """

    def __init__(
        self,
        postgres_locks: Mapping[tuple[str, bool], frozenset[LockMode]] | None = None,
        mysql_blocking: Mapping[str, Blocking] | None = None,
    ) -> None:
        self._postgres_locks = dict(POSTGRES_LOCKS if postgres_locks is None else postgres_locks)
        self._mysql_blocking = dict(MYSQL_BLOCKING if mysql_blocking is None else mysql_blocking)

    def locks_required_by(
        self,
        kind: str,
        engine: Engine,
        *,
        concurrently: bool = False,
    ) -> frozenset[Lock]:
        """Locks an operation kind takes on the given engine.

        Postgres yields LockModes; MySQL/MariaDB yield a single Blocking state.
        Unknown kinds yield the most exclusive lock.
        """
        if engine.kind is EngineKind.POSTGRES:
            locks = self._postgres_locks.get((kind, concurrently))
            if locks is None:
                locks = self._postgres_locks.get((kind, False), frozenset({_L.ACCESS_EXCLUSIVE}))
            return frozenset(locks)
        return frozenset({self._mysql_blocking.get(kind, _B.BLOCKING)})

    @staticmethod
    def conflicts(a: Lock, b: Lock) -> bool:
        """True if a lock held in mode ``a`` blocks a request for mode ``b``."""
        if isinstance(a, LockMode) and isinstance(b, LockMode):
            return b in POSTGRES_CONFLICTS[a]
        if isinstance(a, Blocking) and isinstance(b, Blocking):
            return a is _B.BLOCKING or b is _B.BLOCKING
        raise TypeError(f"Cannot compare lock modes of different engines: {a!r}, {b!r}")

    @staticmethod
    def strongest(locks: Iterable[Lock]) -> Lock | None:
        """The most exclusive lock in ``locks``, or None if empty."""
        items = list(locks)
        if not items:
            return None
        if all(isinstance(lock, LockMode) for lock in items):
            return max(items)  # type: ignore[type-var]
        if _B.BLOCKING in items:
            return _B.BLOCKING
        return items[0]

    def blocks_reads(self, lock: Lock) -> bool:
        if isinstance(lock, Blocking):
            return False
        return self.conflicts(lock, _L.ACCESS_SHARE)

    def blocks_writes(self, lock: Lock) -> bool:
        if isinstance(lock, Blocking):
            return lock is _B.BLOCKING
        return self.conflicts(lock, _L.ROW_EXCLUSIVE)


DEFAULT_KNOWLEDGE_BASE = LockKnowledgeBase()


def locks_required_by(kind: str, engine: Engine, *, concurrently: bool = False) -> frozenset[Lock]:
    return DEFAULT_KNOWLEDGE_BASE.locks_required_by(kind, engine, concurrently=concurrently)


def conflicts(a: Lock, b: Lock) -> bool:
    return LockKnowledgeBase.conflicts(a, b)
