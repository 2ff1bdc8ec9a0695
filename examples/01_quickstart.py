"""Quickstart: classify a small migration batch against two engines."""

from migrationguard import (
    AddColumn,
    AlterColumnDefault,
    CreateIndex,
    Engine,
    MigrationBatch,
    MigrationUnit,
    analyze,
)
from migrationguard.render import render_text


def main():
    batch = MigrationBatch.of(
        MigrationUnit("0001_add_approved", (AddColumn("users", "approved", "boolean"),)),
        MigrationUnit("0002_default_approved", (AlterColumnDefault("users", "approved", "false"),)),
        MigrationUnit("0003_index_approved", (CreateIndex("users", ["approved"]),)),
    )

    for engine in (Engine.postgres(12), Engine.mysql("8.0.12")):
        report = analyze(batch, engine)
        print(render_text(report, verbose=True))

        # Blocking issues decide whether CI should fail
        print(f"blocking: {report.has_blocking_issues()}\n")


if __name__ == "__main__":
    main()
