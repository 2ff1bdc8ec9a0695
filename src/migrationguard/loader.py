"""Migration loader - build a MigrationBatch from migration files on disk."""

from __future__ import annotations

import importlib.util
import json
import logging
import re
from pathlib import Path
from typing import Any

from migrationguard.exceptions import InvalidOperation, LoaderError
from migrationguard.migration import Migration, MigrationBatch, MigrationUnit

logger = logging.getLogger("migrationguard")

_MIGRATION_RE = re.compile(r"^(\d+)_.+\.py$")


def _import_unit(entry: Path) -> MigrationUnit | None:
    """Import one migration file and turn its ``M`` class into a unit."""
    name = entry.stem
    spec = importlib.util.spec_from_file_location(f"migrationguard_migrations.{name}", entry)
    if spec is None or spec.loader is None:
        return None
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except InvalidOperation:
        raise
    except Exception as exc:
        raise LoaderError(f"Failed to import {entry.name}: {exc}", path=str(entry)) from exc

    m_cls = getattr(module, "M", None)
    if m_cls is None or not (isinstance(m_cls, type) and issubclass(m_cls, Migration)):
        logger.debug(f"Skipping {entry.name}: no Migration subclass named M")
        return None

    return MigrationUnit(
        name=name,
        operations=tuple(getattr(m_cls, "operations", [])),
        disable_ddl_transaction=getattr(m_cls, "disable_ddl_transaction", False),
        disable_migration_lock=getattr(m_cls, "disable_migration_lock", False),
        safety_assured=getattr(m_cls, "safety_assured", False),
    )


def load_batch(directory: str | Path) -> MigrationBatch:
    """Discover ``NNNN_name.py`` migration files and load them in number order.

    A missing directory yields an empty batch.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return MigrationBatch()

    numbered: list[tuple[int, str, MigrationUnit]] = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_file():
            continue
        match = _MIGRATION_RE.match(entry.name)
        if not match:
            continue
        unit = _import_unit(entry)
        if unit is not None:
            numbered.append((int(match.group(1)), unit.name, unit))

    numbered.sort(key=lambda item: (item[0], item[1]))
    logger.debug(f"Loaded {len(numbered)} migration(s) from {directory}")
    return MigrationBatch(units=tuple(unit for _, _, unit in numbered))


def load_batch_json(path: str | Path) -> MigrationBatch:
    """Read a batch from JSON: ``{"migrations": [{"name": ..., "operations": [...]}]}``."""
    path = Path(path)
    try:
        data: Any = json.loads(path.read_text())
    except OSError as exc:
        raise LoaderError(f"Cannot read {path}: {exc}", path=str(path)) from exc
    except json.JSONDecodeError as exc:
        raise LoaderError(f"Invalid JSON in {path}: {exc}", path=str(path)) from exc

    if isinstance(data, list):
        data = {"migrations": data}
    if not isinstance(data, dict) or not isinstance(data.get("migrations"), list):
        raise LoaderError(f"{path} must contain a 'migrations' list", path=str(path))
    for i, unit in enumerate(data["migrations"]):
        if not isinstance(unit, dict) or "name" not in unit:
            raise LoaderError(f"Migration #{i} in {path} has no 'name'", path=str(path))
    return MigrationBatch.from_dict(data)


def load(path: str | Path) -> MigrationBatch:
    """Load a directory of Python migrations or a JSON batch file."""
    path = Path(path)
    if path.is_dir():
        return load_batch(path)
    if path.suffix == ".json":
        return load_batch_json(path)
    raise LoaderError(f"Expected a migrations directory or a .json file: {path}", path=str(path))
