"""Read-only answers to "is this fingerprint registered, and how far along is it"."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from attestor.domain.model import EvidenceStatus
from attestor.domain.registry import is_valid_fingerprint

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from attestor.domain.model import EvidenceRecord, ReplicaState
    from attestor.domain.ports.persistence import EvidenceRepository


@dataclass(frozen=True, slots=True)
class VerificationResult:
    found: bool
    fingerprint: str
    status: EvidenceStatus | None = None
    registration_id: UUID | None = None
    ledger_reference: str | None = None
    confirmation_count: int | None = None
    error_info: str | None = None

    @classmethod
    def missing(cls, fingerprint: str) -> VerificationResult:
        return cls(found=False, fingerprint=fingerprint)

    @classmethod
    def from_record(cls, record: EvidenceRecord) -> VerificationResult:
        return cls(
            found=True,
            fingerprint=record.fingerprint,
            status=record.status,
            registration_id=record.registration_id,
            ledger_reference=record.ledger_reference,
            confirmation_count=record.confirmation_count,
            error_info=record.error_info,
        )


@dataclass(frozen=True, slots=True)
class RegistryStats:
    total_count: int
    last_merged_sequence: int
    by_status: dict[EvidenceStatus, int] = field(default_factory=dict["EvidenceStatus", int])


def verify(
    fingerprint: str,
    *,
    snapshot: ReplicaState,
    repository: EvidenceRepository | None = None,
) -> VerificationResult:
    """Look ``fingerprint`` up; a miss (or malformed input) is ``found=False``.

    The persisted record carries the reconciled status, so it wins over the
    snapshot entry, which only knows the status at merge time.
    """

    if not is_valid_fingerprint(fingerprint):
        return VerificationResult.missing(fingerprint)
    canonical = fingerprint.lower()

    if repository is not None:
        persisted = repository.get(canonical)
        if persisted is not None:
            return VerificationResult.from_record(persisted)

    merged = snapshot.get(canonical)
    if merged is None:
        return VerificationResult.missing(canonical)
    return VerificationResult.from_record(merged)


def list_by_submitter(
    submitter_id: str, *, repository: EvidenceRepository
) -> Sequence[EvidenceRecord]:
    return repository.list_by_submitter(submitter_id)


def registry_stats(*, snapshot: ReplicaState, repository: EvidenceRepository) -> RegistryStats:
    counts = Counter(record.status for record in repository.all())
    return RegistryStats(
        total_count=snapshot.total_count,
        last_merged_sequence=snapshot.last_merged_sequence,
        by_status={status: counts.get(status, 0) for status in EvidenceStatus},
    )
