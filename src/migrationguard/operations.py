"""Migration operations - normalized, immutable schema-change descriptions."""

from __future__ import annotations

import functools
import hashlib
import re
from dataclasses import MISSING, dataclass, fields
from typing import Any, ClassVar

from migrationguard.exceptions import InvalidOperation

# Flags that only some operation kinds accept
FLAG_FIELDS = ("concurrently", "validate", "volatile_default", "unique", "force")

# Functions re-evaluated per row; a default built from them forces a rewrite
VOLATILE_FUNCTIONS = (
    "random",
    "rand",
    "gen_random_uuid",
    "uuid_generate_v1",
    "uuid_generate_v1mc",
    "uuid_generate_v4",
    "uuid",
    "uuid_short",
    "clock_timestamp",
    "timeofday",
    "nextval",
    "sysdate",
)

_VOLATILE_RE = re.compile(
    r"\b(" + "|".join(VOLATILE_FUNCTIONS) + r")\s*\(",
    re.IGNORECASE,
)


def is_volatile_expression(expression: str | None) -> bool:
    """True if a default expression calls a known volatile function."""
    if not expression:
        return False
    return _VOLATILE_RE.search(expression) is not None


class OperationBase:
    """Shared behavior for all operation dataclasses.

    Subclasses declare ``kind`` and list their non-empty string fields in
    ``_required``; flag fields must be real bools.
    """

    kind: ClassVar[str] = ""
    _required: ClassVar[tuple[str, ...]] = ()

    def __post_init__(self) -> None:
        for name in self._required:
            value = getattr(self, name)
            if value is None or (isinstance(value, (str, tuple)) and not value):
                raise InvalidOperation(
                    f"{self.kind} requires {name!r}", kind=self.kind, field=name
                )
        for name in FLAG_FIELDS:
            if hasattr(self, name) and not isinstance(getattr(self, name), bool):
                raise InvalidOperation(
                    f"{self.kind}.{name} must be a bool, got {getattr(self, name)!r}",
                    kind=self.kind,
                    field=name,
                )

    def _freeze(self, name: str) -> None:
        """Store a str-or-sequence field as a tuple of strings."""
        value = getattr(self, name)
        if isinstance(value, str):
            value = (value,)
        object.__setattr__(self, name, tuple(value or ()))

    def describe(self) -> str:
        return self.kind

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.kind}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            d[f.name] = list(value) if isinstance(value, tuple) else value
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> OperationBase:
        payload = {k: v for k, v in d.items() if k != "type"}
        return create_operation(cls.kind, **payload)

    def template_fields(self) -> dict[str, str]:
        """Field values as display strings, for rationale templates."""
        out: dict[str, str] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if isinstance(value, tuple):
                out[f.name] = ", ".join(value)
            else:
                out[f.name] = "" if value is None else str(value)
        return out


def _check_arguments(cls: type, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
    """Raise InvalidOperation for unknown, duplicate or missing constructor fields."""
    kind = cls.kind
    known = [f for f in fields(cls) if f.init]
    if len(args) > len(known):
        raise InvalidOperation(
            f"{kind} takes at most {len(known)} fields, got {len(args)}", kind=kind
        )
    positional = {f.name for f in known[: len(args)]}
    names = {f.name for f in known}
    for name in kwargs:
        if name in positional:
            raise InvalidOperation(f"{kind} got {name!r} twice", kind=kind, field=name)
        if name in names:
            continue
        if name in FLAG_FIELDS:
            raise InvalidOperation(
                f"{name!r} is not valid for {kind}", kind=kind, field=name
            )
        raise InvalidOperation(f"Unknown field {name!r} for {kind}", kind=kind, field=name)

    for f in known:
        if f.name in positional or f.name in kwargs:
            continue
        if f.default is MISSING and f.default_factory is MISSING:
            raise InvalidOperation(f"{kind} requires {f.name!r}", kind=kind, field=f.name)


def operation(cls: type) -> type:
    """Make ``cls`` a frozen dataclass whose constructor raises InvalidOperation."""
    cls = dataclass(frozen=True)(cls)
    init = cls.__init__

    @functools.wraps(init)
    def __init__(self: Any, *args: Any, **kwargs: Any) -> None:
        _check_arguments(cls, args, kwargs)
        init(self, *args, **kwargs)

    cls.__init__ = __init__  # type: ignore[misc]
    return cls


# ── Columns ───────────────────────────────────────────────────────────


@operation
class AddColumn(OperationBase):
    """Add a nullable column with no default."""

    kind: ClassVar[str] = "AddColumn"
    _required: ClassVar[tuple[str, ...]] = ("table", "column", "column_type")

    table: str
    column: str
    column_type: str

    def describe(self) -> str:
        return f"Add column {self.table}.{self.column} ({self.column_type})"


@operation
class AddColumnWithDefault(OperationBase):
    """Add a column with a default value backfilled onto existing rows."""

    kind: ClassVar[str] = "AddColumnWithDefault"
    _required: ClassVar[tuple[str, ...]] = ("table", "column", "column_type", "default")

    table: str
    column: str
    column_type: str
    default: str
    volatile_default: bool = False

    @property
    def has_volatile_default(self) -> bool:
        return self.volatile_default or is_volatile_expression(self.default)

    def describe(self) -> str:
        return (
            f"Add column {self.table}.{self.column} ({self.column_type}) "
            f"default {self.default}"
        )


@operation
class AddJsonColumn(OperationBase):
    """Add a column of the plain ``json`` type."""

    kind: ClassVar[str] = "AddJsonColumn"
    _required: ClassVar[tuple[str, ...]] = ("table", "column")

    table: str
    column: str

    def describe(self) -> str:
        return f"Add json column {self.table}.{self.column}"


@operation
class AlterColumnType(OperationBase):
    """Change a column's type."""

    kind: ClassVar[str] = "AlterColumnType"
    _required: ClassVar[tuple[str, ...]] = ("table", "column", "from_type", "to_type")

    table: str
    column: str
    from_type: str
    to_type: str

    def describe(self) -> str:
        return f"Change type of {self.table}.{self.column} from {self.from_type} to {self.to_type}"


@operation
class AlterColumnDefault(OperationBase):
    """Set or drop a column default.

    ``default=None`` drops the default. ``with_type`` is set when the
    underlying statement also redefines the column type (e.g. a full
    column redefinition), which turns a metadata change into a rewrite.
    """

    kind: ClassVar[str] = "AlterColumnDefault"
    _required: ClassVar[tuple[str, ...]] = ("table", "column")

    table: str
    column: str
    default: str | None = None
    with_type: str | None = None

    @property
    def bundles_type_change(self) -> bool:
        return bool(self.with_type)

    def describe(self) -> str:
        action = "Drop default" if self.default is None else f"Set default {self.default}"
        return f"{action} on {self.table}.{self.column}"


@operation
class RemoveColumn(OperationBase):
    """Drop one or more columns."""

    kind: ClassVar[str] = "RemoveColumn"
    _required: ClassVar[tuple[str, ...]] = ("table", "columns")

    table: str
    columns: tuple[str, ...]

    def __post_init__(self) -> None:
        self._freeze("columns")
        super().__post_init__()

    def describe(self) -> str:
        return f"Remove column(s) {', '.join(self.columns)} from {self.table}"


@operation
class RenameColumn(OperationBase):
    kind: ClassVar[str] = "RenameColumn"
    _required: ClassVar[tuple[str, ...]] = ("table", "column", "new_name")

    table: str
    column: str
    new_name: str

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.column == self.new_name:
            raise InvalidOperation(
                f"RenameColumn to the same name {self.column!r}",
                kind=self.kind,
                field="new_name",
            )

    def describe(self) -> str:
        return f"Rename column {self.table}.{self.column} to {self.new_name}"


@operation
class SetNotNull(OperationBase):
    """Add a NOT NULL constraint to an existing column.

    ``validate=False`` means the constraint is introduced constraint-first:
    as an unvalidated ``IS NOT NULL`` check to be validated later.
    """

    kind: ClassVar[str] = "SetNotNull"
    _required: ClassVar[tuple[str, ...]] = ("table", "column")

    table: str
    column: str
    validate: bool = True

    def describe(self) -> str:
        return f"Set NOT NULL on {self.table}.{self.column}"


# ── Tables ────────────────────────────────────────────────────────────


@operation
class CreateTable(OperationBase):
    """Create a table; ``force`` drops an existing table of the same name first."""

    kind: ClassVar[str] = "CreateTable"
    _required: ClassVar[tuple[str, ...]] = ("table",)

    table: str
    force: bool = False

    def describe(self) -> str:
        suffix = " (force)" if self.force else ""
        return f"Create table {self.table}{suffix}"


@operation
class RenameTable(OperationBase):
    kind: ClassVar[str] = "RenameTable"
    _required: ClassVar[tuple[str, ...]] = ("table", "new_name")

    table: str
    new_name: str

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.table == self.new_name:
            raise InvalidOperation(
                f"RenameTable to the same name {self.table!r}",
                kind=self.kind,
                field="new_name",
            )

    def describe(self) -> str:
        return f"Rename table {self.table} to {self.new_name}"


# ── Indexes ───────────────────────────────────────────────────────────


@operation
class CreateIndex(OperationBase):
    kind: ClassVar[str] = "CreateIndex"
    _required: ClassVar[tuple[str, ...]] = ("table", "columns")

    table: str
    columns: tuple[str, ...]
    name: str | None = None
    unique: bool = False
    concurrently: bool = False

    def __post_init__(self) -> None:
        self._freeze("columns")
        super().__post_init__()

    @property
    def index_name(self) -> str:
        return self.name or f"index_{self.table}_on_{'_and_'.join(self.columns)}"

    def describe(self) -> str:
        how = " concurrently" if self.concurrently else ""
        unique = "unique " if self.unique else ""
        return f"Create {unique}index{how} {self.index_name} on {self.table}({', '.join(self.columns)})"


@operation
class RemoveIndex(OperationBase):
    """Drop an index, identified by name or by its columns."""

    kind: ClassVar[str] = "RemoveIndex"
    _required: ClassVar[tuple[str, ...]] = ("table",)

    table: str
    name: str | None = None
    columns: tuple[str, ...] = ()
    concurrently: bool = False

    def __post_init__(self) -> None:
        self._freeze("columns")
        super().__post_init__()
        if not self.name and not self.columns:
            raise InvalidOperation(
                "RemoveIndex requires 'name' or 'columns'", kind=self.kind, field="name"
            )

    @property
    def index_name(self) -> str:
        return self.name or f"index_{self.table}_on_{'_and_'.join(self.columns)}"

    def describe(self) -> str:
        how = " concurrently" if self.concurrently else ""
        return f"Remove index{how} {self.index_name} from {self.table}"


# ── Constraints ───────────────────────────────────────────────────────


@operation
class AddForeignKey(OperationBase):
    kind: ClassVar[str] = "AddForeignKey"
    _required: ClassVar[tuple[str, ...]] = ("table", "to_table")

    table: str
    to_table: str
    column: str | None = None
    name: str | None = None
    validate: bool = True

    def matches(self, other: ValidateForeignKey) -> bool:
        """True if ``other`` validates this foreign key."""
        if self.table != other.table:
            return False
        if self.name and other.name:
            return self.name == other.name
        return other.to_table is not None and self.to_table == other.to_table

    def describe(self) -> str:
        validated = "" if self.validate else " (not valid)"
        return f"Add foreign key {self.table} -> {self.to_table}{validated}"


@operation
class ValidateForeignKey(OperationBase):
    """Validate a previously added, unvalidated foreign key."""

    kind: ClassVar[str] = "ValidateForeignKey"
    _required: ClassVar[tuple[str, ...]] = ("table",)

    table: str
    to_table: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.to_table and not self.name:
            raise InvalidOperation(
                "ValidateForeignKey requires 'to_table' or 'name'",
                kind=self.kind,
                field="to_table",
            )

    def describe(self) -> str:
        target = self.name or self.to_table
        return f"Validate foreign key {target} on {self.table}"


def default_check_name(table: str, expression: str) -> str:
    """Deterministic constraint name for an unnamed check constraint."""
    digest = hashlib.sha256(f"{table}_{expression}".encode()).hexdigest()[:10]
    return f"chk_{digest}"


_NOT_NULL_RE = re.compile(
    r'^\s*\(?\s*"?(?P<column>[A-Za-z_][A-Za-z0-9_]*)"?\s+IS\s+NOT\s+NULL\s*\)?\s*$',
    re.IGNORECASE,
)


@operation
class AddCheckConstraint(OperationBase):
    kind: ClassVar[str] = "AddCheckConstraint"
    _required: ClassVar[tuple[str, ...]] = ("table", "expression")

    table: str
    expression: str
    name: str | None = None
    validate: bool = True

    @property
    def constraint_name(self) -> str:
        return self.name or default_check_name(self.table, self.expression)

    @property
    def not_null_column(self) -> str | None:
        """Column name if the expression is exactly ``<column> IS NOT NULL``."""
        match = _NOT_NULL_RE.match(self.expression)
        return match.group("column") if match else None

    def describe(self) -> str:
        validated = "" if self.validate else " (not valid)"
        return f"Add check constraint {self.constraint_name} on {self.table}{validated}"


@operation
class ValidateCheckConstraint(OperationBase):
    kind: ClassVar[str] = "ValidateCheckConstraint"
    _required: ClassVar[tuple[str, ...]] = ("table", "name")

    table: str
    name: str

    def describe(self) -> str:
        return f"Validate check constraint {self.name} on {self.table}"


@operation
class AddUniqueConstraint(OperationBase):
    """Add a unique constraint, optionally backed by an existing index."""

    kind: ClassVar[str] = "AddUniqueConstraint"
    _required: ClassVar[tuple[str, ...]] = ("table", "columns")

    table: str
    columns: tuple[str, ...]
    name: str | None = None
    using_index: str | None = None

    def __post_init__(self) -> None:
        self._freeze("columns")
        super().__post_init__()

    def describe(self) -> str:
        backing = f" using index {self.using_index}" if self.using_index else ""
        return f"Add unique constraint on {self.table}({', '.join(self.columns)}){backing}"


# ── Escape hatch ──────────────────────────────────────────────────────


@operation
class ExecuteSql(OperationBase):
    """Raw SQL the analyzer cannot see into."""

    kind: ClassVar[str] = "ExecuteSql"
    _required: ClassVar[tuple[str, ...]] = ("sql",)

    sql: str
    table: str | None = None

    def describe(self) -> str:
        text = " ".join(self.sql.split())
        if len(text) > 40:
            text = text[:37] + "..."
        return f"Execute SQL: {text}"


# Union type for all operations
Operation = (
    AddColumn
    | AddColumnWithDefault
    | AddJsonColumn
    | AlterColumnType
    | AlterColumnDefault
    | RemoveColumn
    | RenameColumn
    | SetNotNull
    | CreateTable
    | RenameTable
    | CreateIndex
    | RemoveIndex
    | AddForeignKey
    | ValidateForeignKey
    | AddCheckConstraint
    | ValidateCheckConstraint
    | AddUniqueConstraint
    | ExecuteSql
)

_OPERATION_REGISTRY: dict[str, type] = {
    cls.kind: cls
    for cls in (
        AddColumn,
        AddColumnWithDefault,
        AddJsonColumn,
        AlterColumnType,
        AlterColumnDefault,
        RemoveColumn,
        RenameColumn,
        SetNotNull,
        CreateTable,
        RenameTable,
        CreateIndex,
        RemoveIndex,
        AddForeignKey,
        ValidateForeignKey,
        AddCheckConstraint,
        ValidateCheckConstraint,
        AddUniqueConstraint,
        ExecuteSql,
    )
}

OPERATION_KINDS: tuple[str, ...] = tuple(_OPERATION_REGISTRY)


def create_operation(kind: str, **kwargs: Any) -> Operation:
    """Build an operation of the given kind, validating its fields and flags."""
    cls = _OPERATION_REGISTRY.get(kind)
    if cls is None:
        raise InvalidOperation(f"Unknown operation type: {kind!r}", kind=kind)
    return cls(**kwargs)


def operation_from_dict(d: dict[str, Any]) -> Operation:
    """Deserialize an operation from a dict with a ``"type"`` key."""
    if "type" not in d:
        raise InvalidOperation("Operation dict has no 'type' key")
    payload = {k: v for k, v in d.items() if k != "type"}
    return create_operation(d["type"], **payload)
