"""migrationguard - static safety analysis for relational schema migrations."""

# Engine
from migrationguard.engine import Engine, EngineKind

# Operations
from migrationguard import operations
from migrationguard.operations import (
    AddCheckConstraint,
    AddColumn,
    AddColumnWithDefault,
    AddForeignKey,
    AddJsonColumn,
    AddUniqueConstraint,
    AlterColumnDefault,
    AlterColumnType,
    CreateIndex,
    CreateTable,
    ExecuteSql,
    Operation,
    RemoveColumn,
    RemoveIndex,
    RenameColumn,
    RenameTable,
    SetNotNull,
    ValidateCheckConstraint,
    ValidateForeignKey,
    create_operation,
    operation_from_dict,
)
from migrationguard.migration import Migration, MigrationBatch, MigrationUnit

# Locks
from migrationguard.locks import Blocking, LockKnowledgeBase, LockMode, conflicts, locks_required_by

# Rules
from migrationguard.rules import Remediation, Status, Verdict

# Report
from migrationguard.report import AnalysisReport, OperationRef, OperationResult, SequencingViolation

# Analysis
from migrationguard.config import AnalyzerConfig
from migrationguard.analyzer import Analyzer, analyze, analyze_batches, analyze_batches_sync

# Exceptions
from migrationguard.exceptions import (
    ConfigurationError,
    InvalidOperation,
    LoaderError,
    MigrationGuardError,
    UnsupportedEngineVersion,
)

__version__ = "0.1.0"

__all__ = [
    # Engine
    "Engine",
    "EngineKind",
    # Operations
    "operations",
    "Operation",
    "AddColumn",
    "AddColumnWithDefault",
    "AddJsonColumn",
    "AlterColumnType",
    "AlterColumnDefault",
    "RemoveColumn",
    "RenameColumn",
    "SetNotNull",
    "CreateTable",
    "RenameTable",
    "CreateIndex",
    "RemoveIndex",
    "AddForeignKey",
    "ValidateForeignKey",
    "AddCheckConstraint",
    "ValidateCheckConstraint",
    "AddUniqueConstraint",
    "ExecuteSql",
    "create_operation",
    "operation_from_dict",
    # Units
    "Migration",
    "MigrationUnit",
    "MigrationBatch",
    # Locks
    "LockMode",
    "Blocking",
    "LockKnowledgeBase",
    "locks_required_by",
    "conflicts",
    # Rules
    "Status",
    "Remediation",
    "Verdict",
    # Report
    "AnalysisReport",
    "OperationRef",
    "OperationResult",
    "SequencingViolation",
    # Analysis
    "AnalyzerConfig",
    "Analyzer",
    "analyze",
    "analyze_batches",
    "analyze_batches_sync",
    # Exceptions
    "MigrationGuardError",
    "InvalidOperation",
    "UnsupportedEngineVersion",
    "ConfigurationError",
    "LoaderError",
]
