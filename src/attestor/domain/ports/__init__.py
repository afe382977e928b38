"""Domain port definitions for adapters."""

from __future__ import annotations

from .confirmation import (
    ConfirmationError,
    ConfirmationSource,
    ConfirmationStatus,
    RejectedConfirmationError,
    SubmissionPayload,
    TransientConfirmationError,
)
from .persistence import EvidenceRepository, ReconciliationTaskRepository, Repository
from .unit_of_work import (
    EvidenceRepositories,
    EvidenceUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "ConfirmationError",
    "ConfirmationSource",
    "ConfirmationStatus",
    "EvidenceRepositories",
    "EvidenceRepository",
    "EvidenceUnitOfWork",
    "ReconciliationTaskRepository",
    "RejectedConfirmationError",
    "Repository",
    "RepositoryCollection",
    "SubmissionPayload",
    "TransientConfirmationError",
    "UnitOfWork",
]
