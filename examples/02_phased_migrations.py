"""Phased migrations: constraint-first NOT NULL and deferred foreign key validation.

Compares a one-shot migration with the same change split across
deployable steps, then analyzes several services' batches concurrently.

Usage:
    python examples/02_phased_migrations.py
"""

import asyncio

import pandas as pd

from migrationguard import (
    AddCheckConstraint,
    AddForeignKey,
    Engine,
    MigrationBatch,
    MigrationUnit,
    SetNotNull,
    ValidateCheckConstraint,
    ValidateForeignKey,
    analyze_batches,
)


# ── One shot ─────────────────────────────────────────────────────────

ONE_SHOT = MigrationBatch.of(
    MigrationUnit(
        "0001_require_email",
        (
            AddForeignKey("orders", "users", column="user_id", validate=False),
            ValidateForeignKey("orders", to_table="users"),
            SetNotNull("users", "email"),
        ),
    ),
)


# ── Phased ───────────────────────────────────────────────────────────

PHASED = MigrationBatch.of(
    MigrationUnit(
        "0001_add_constraints",
        (
            AddForeignKey("orders", "users", column="user_id", validate=False),
            AddCheckConstraint("users", "email IS NOT NULL", name="users_email_null", validate=False),
        ),
    ),
    MigrationUnit(
        "0002_validate_constraints",
        (
            ValidateForeignKey("orders", to_table="users"),
            ValidateCheckConstraint("users", "users_email_null"),
        ),
    ),
    MigrationUnit("0003_require_email", (SetNotNull("users", "email"),)),
)


async def main():
    engine = Engine.postgres(12)
    one_shot, phased = await analyze_batches([ONE_SHOT, PHASED], engine)

    for label, report in (("one shot", one_shot), ("phased", phased)):
        print(f"== {label}: worst={report.worst_severity().value}")
        for violation in report.violations:
            print(f"   {violation.rule_id}: {violation.message}")

    frame: pd.DataFrame = phased.to_df()
    print(frame[["unit", "kind", "status", "rule_id"]].to_string(index=False))


if __name__ == "__main__":
    asyncio.run(main())
