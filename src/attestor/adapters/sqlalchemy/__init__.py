"""SQLAlchemy adapter package for attestor."""

from __future__ import annotations

from .mappings import (
    create_all_tables,
    evidence_record_table,
    metadata,
    reconciliation_task_table,
)
from .repositories import SqlAlchemyEvidenceRepository, SqlAlchemyReconciliationTaskRepository
from .unit_of_work import (
    SqlAlchemyEvidenceUnitOfWork,
    StartupError,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyEvidenceRepository",
    "SqlAlchemyEvidenceUnitOfWork",
    "SqlAlchemyReconciliationTaskRepository",
    "StartupError",
    "create_all_tables",
    "evidence_record_table",
    "is_started",
    "metadata",
    "reconciliation_task_table",
    "shutdown",
    "startup",
]
