"""Allow-list of column type changes that do not rewrite the table.

Each check returns ``(allowed, feature)``: whether the change is on the
allow-list at all, and the version-threshold feature the engine must
support for it to hold (None when no version requirement applies).
"""

from __future__ import annotations

from migrationguard.engine import Engine
from migrationguard.types import ColumnType, parse_type

# Types whose only modifier is a fractional-seconds precision
_PRECISION_TYPES = frozenset({"timestamp", "timestamptz", "time", "timetz", "interval"})

# utf8mb4 stores up to 4 bytes per character; past 255 bytes the length
# prefix grows to 2 bytes and the column has to be copied
_MYSQL_ONE_BYTE_PREFIX_CHARS = 255 // 4

Requirement = tuple[bool, "str | None"]

_NOT_ALLOWED: Requirement = (False, None)


def _precision_not_reduced(old: ColumnType, new: ColumnType) -> bool:
    # An omitted precision is the maximum (6)
    if new.length is None:
        return True
    if old.length is None:
        return False
    return new.length >= old.length


def postgres_requirement(old: ColumnType, new: ColumnType, engine: Engine) -> Requirement:
    if old == new:
        return True, None

    if old.name == "varchar":
        if new.name == "text":
            return True, "binary_coercible_change"
        if new.name == "varchar":
            if new.length is None:
                return True, "binary_coercible_change"
            if old.length is not None and new.length >= old.length:
                return True, "binary_coercible_change"
        return _NOT_ALLOWED

    if old.name == "text" and new.name == "varchar" and new.length is None:
        return True, "binary_coercible_change"

    if old.name == "decimal" and new.name == "decimal":
        if new.length is None:
            return True, "decimal_precision_increase"
        if old.length is None:
            return _NOT_ALLOWED
        if new.scale == old.scale and new.length >= old.length:
            return True, "decimal_precision_increase"
        return _NOT_ALLOWED

    if old.name == "cidr" and new.name == "inet":
        return True, "binary_coercible_change"

    if old.name == new.name and old.name in _PRECISION_TYPES:
        if _precision_not_reduced(old, new):
            return True, "binary_coercible_change"
        return _NOT_ALLOWED

    if {old.name, new.name} == {"timestamp", "timestamptz"}:
        # Reinterpretation is only a no-op when the session zone is UTC
        if engine.time_zone.upper() not in ("UTC", "ETC/UTC", "GMT"):
            return _NOT_ALLOWED
        if _precision_not_reduced(old, new):
            return True, "timestamptz_conversion"
        return _NOT_ALLOWED

    return _NOT_ALLOWED


def mysql_requirement(old: ColumnType, new: ColumnType, engine: Engine) -> Requirement:
    if old == new:
        return True, None
    if old.name == "varchar" and new.name == "varchar":
        if old.length is None or new.length is None or new.length < old.length:
            return _NOT_ALLOWED
        limit = _MYSQL_ONE_BYTE_PREFIX_CHARS
        if (old.length <= limit) == (new.length <= limit):
            return True, "inplace_varchar_extension"
    return _NOT_ALLOWED


def type_change_requirement(from_type: str, to_type: str, engine: Engine) -> Requirement:
    """Look up a (from_type, to_type) change for the engine."""
    old, new = parse_type(from_type), parse_type(to_type)
    if engine.is_postgres:
        return postgres_requirement(old, new, engine)
    return mysql_requirement(old, new, engine)
