"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class EvidenceStatus(StrEnum):
    """Lifecycle of one registration, in state machine order."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    FINALIZED = "finalized"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[EvidenceStatus] = frozenset(
    {EvidenceStatus.FINALIZED, EvidenceStatus.ERRORED}
)

# records the reconciliation loop still has to drive
IN_FLIGHT_STATUSES: frozenset[EvidenceStatus] = frozenset(
    {EvidenceStatus.SUBMITTED, EvidenceStatus.AWAITING_CONFIRMATION}
)


class ConfirmationState(StrEnum):
    PENDING = "pending"
    FINAL = "final"
    REJECTED = "rejected"


class RegistryErrorCode(StrEnum):
    INVALID_FINGERPRINT_FORMAT = "InvalidFingerprintFormat"
    INVALID_TIMESTAMP = "InvalidTimestamp"
    INVALID_METADATA = "InvalidMetadata"
    DUPLICATE_FINGERPRINT = "DuplicateFingerprint"
