"""Migration units and batches - the analyzer's input shapes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from migrationguard.exceptions import InvalidOperation
from migrationguard.operations import Operation, OperationBase, operation_from_dict

UNIT_FLAGS = ("disable_ddl_transaction", "disable_migration_lock", "safety_assured")


class Migration:
    """Base class for Python migration files read by the loader.

    Subclass as ``M`` in each migration file::

        class M(Migration):
            disable_ddl_transaction = True
            operations = [ops.CreateIndex(table="users", columns=["email"], concurrently=True)]
    """

    operations: list[Operation] = []
    disable_ddl_transaction: bool = False
    disable_migration_lock: bool = False
    safety_assured: bool = False


@dataclass(frozen=True)
class MigrationUnit:
    """Operations that share one transactional boundary."""

    name: str
    operations: tuple[Operation, ...] = ()
    disable_ddl_transaction: bool = False
    disable_migration_lock: bool = False
    safety_assured: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "operations", tuple(self.operations))
        for op in self.operations:
            if not isinstance(op, OperationBase):
                raise InvalidOperation(
                    f"Migration {self.name!r} contains a non-operation: {op!r}"
                )
        for flag in UNIT_FLAGS:
            value = getattr(self, flag)
            if not isinstance(value, bool):
                raise InvalidOperation(
                    f"Migration {self.name!r}: {flag} must be a bool, got {value!r}",
                    field=flag,
                )

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "disable_ddl_transaction": self.disable_ddl_transaction,
            "disable_migration_lock": self.disable_migration_lock,
            "safety_assured": self.safety_assured,
            "operations": [op.to_dict() for op in self.operations],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> MigrationUnit:
        return cls(
            name=d["name"],
            operations=tuple(operation_from_dict(o) for o in d.get("operations", [])),
            disable_ddl_transaction=d.get("disable_ddl_transaction", False),
            disable_migration_lock=d.get("disable_migration_lock", False),
            safety_assured=d.get("safety_assured", False),
        )


@dataclass(frozen=True)
class MigrationBatch:
    """A deployment's full migration plan, in applied order."""

    units: tuple[MigrationUnit, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "units", tuple(self.units))

    def __len__(self) -> int:
        return len(self.units)

    def __iter__(self) -> Iterator[MigrationUnit]:
        return iter(self.units)

    @classmethod
    def of(cls, *units: MigrationUnit) -> MigrationBatch:
        return cls(units=units)

    def to_dict(self) -> dict[str, Any]:
        return {"migrations": [u.to_dict() for u in self.units]}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> MigrationBatch:
        return cls(units=tuple(MigrationUnit.from_dict(u) for u in d.get("migrations", [])))
