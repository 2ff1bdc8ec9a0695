"""SQL column type normalization used by the type-change rules."""

from __future__ import annotations

import re
from dataclasses import dataclass

# Map alternate spellings to one canonical name.
# Multi-word names are matched before modifiers are split off.
TYPE_ALIASES: dict[str, str] = {
    "character varying": "varchar",
    "char varying": "varchar",
    "character": "char",
    "bpchar": "char",
    "numeric": "decimal",
    "dec": "decimal",
    "int": "integer",
    "int4": "integer",
    "int8": "bigint",
    "int2": "smallint",
    "float8": "double precision",
    "double": "double precision",
    "float4": "real",
    "bool": "boolean",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "time without time zone": "time",
    "time with time zone": "timetz",
    "datetime": "datetime",
}

_TYPE_RE = re.compile(
    r"^\s*(?P<name>[a-z][a-z0-9_ ]*?)\s*"
    r"(?:\(\s*(?P<args>[0-9 ,]*)\s*\))?"
    r"(?P<suffix>\s+with(?:out)?\s+time\s+zone)?\s*$"
)


@dataclass(frozen=True)
class ColumnType:
    """A parsed column type: canonical name plus numeric modifiers.

    ``varchar(255)`` -> ColumnType("varchar", (255,))
    ``decimal(10, 2)`` -> ColumnType("decimal", (10, 2))
    ``text`` -> ColumnType("text", ())
    """

    name: str
    modifiers: tuple[int, ...] = ()

    @property
    def length(self) -> int | None:
        """First modifier (length or precision), or None if unconstrained."""
        return self.modifiers[0] if self.modifiers else None

    @property
    def scale(self) -> int:
        """Decimal scale; an omitted scale is 0."""
        return self.modifiers[1] if len(self.modifiers) > 1 else 0

    def __str__(self) -> str:
        if not self.modifiers:
            return self.name
        return f"{self.name}({','.join(str(m) for m in self.modifiers)})"


def parse_type(spec: str) -> ColumnType:
    """Parse a SQL type string into a normalized ColumnType.

    Unrecognized syntax is kept verbatim (lower-cased) as the type name so
    that an unknown change is never matched by the allow-list.
    """
    text = " ".join(spec.strip().lower().split())
    match = _TYPE_RE.match(text)
    if match is None:
        return ColumnType(text)

    name = match.group("name").strip()
    suffix = match.group("suffix")
    if suffix:
        name = f"{name} {suffix.strip()}"
        name = " ".join(name.split())
    name = TYPE_ALIASES.get(name, name)

    args = match.group("args")
    modifiers: tuple[int, ...] = ()
    if args is not None and args.strip():
        modifiers = tuple(int(a) for a in args.replace(" ", "").split(",") if a)
    return ColumnType(name, modifiers)


def is_json(spec: str) -> bool:
    """True for the plain ``json`` type (not ``jsonb``)."""
    return parse_type(spec).name == "json"
