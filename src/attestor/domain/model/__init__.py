"""Domain model for evidence attestation."""

from __future__ import annotations

from .enums import (
    IN_FLIGHT_STATUSES,
    TERMINAL_STATUSES,
    ConfirmationState,
    EvidenceStatus,
    RegistryErrorCode,
)
from .evidence import (
    CandidateSubmission,
    EvidenceRecord,
    Fingerprint,
    ReconciliationTask,
    new_registration_id,
)
from .state import ReplicaState

__all__ = [
    "IN_FLIGHT_STATUSES",
    "TERMINAL_STATUSES",
    "CandidateSubmission",
    "ConfirmationState",
    "EvidenceRecord",
    "EvidenceStatus",
    "Fingerprint",
    "ReconciliationTask",
    "RegistryErrorCode",
    "ReplicaState",
    "new_registration_id",
]
