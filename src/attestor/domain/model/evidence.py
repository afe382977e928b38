"""
Evidence records:
candidate submissions, the durable record, and pending confirmation work.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from .enums import EvidenceStatus

if TYPE_CHECKING:
    from datetime import datetime


type Fingerprint = str


def new_registration_id() -> UUID:
    return uuid4()


@dataclass(frozen=True, slots=True, kw_only=True)
class CandidateSubmission:
    """Unvalidated payload handed over by a capture client."""

    fingerprint: str
    submitter_id: str
    captured_at: datetime
    origin_url: str
    title: str


@dataclass(frozen=True, slots=True, kw_only=True)
class EvidenceRecord:
    """One registration attempt and its lifecycle status.

    Records are values: every transition produces a new instance via
    :meth:`evolve`, so snapshots handed to readers never change underneath them.
    """

    fingerprint: Fingerprint
    submitter_id: str
    captured_at: datetime
    origin_url: str
    title: str
    registration_id: UUID = field(default_factory=new_registration_id)
    status: EvidenceStatus = EvidenceStatus.PENDING
    ledger_reference: str | None = None
    confirmation_count: int = 0
    error_info: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def evolve(self, *, status: EvidenceStatus, at: datetime, **changes: object) -> EvidenceRecord:
        """Return a copy in ``status`` stamped with ``at``."""
        return replace(self, status=status, updated_at=at, **changes)  # type: ignore[arg-type]

    def matches(self, candidate: CandidateSubmission) -> bool:
        """Whether ``candidate`` is a resubmission of this exact payload."""
        return (
            self.submitter_id == candidate.submitter_id
            and self.captured_at == candidate.captured_at
            and self.origin_url == candidate.origin_url.strip()
            and self.title == candidate.title.strip()
        )

    def canonical_payload(self) -> dict[str, object]:
        return {
            "fingerprint": self.fingerprint,
            "submitter_id": self.submitter_id,
            "captured_at": self.captured_at.isoformat(),
            "origin_url": self.origin_url,
            "title": self.title,
            "registration_id": str(self.registration_id),
            "status": self.status.value,
            "ledger_reference": self.ledger_reference,
            "confirmation_count": self.confirmation_count,
            "error_info": self.error_info,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True, kw_only=True)
class ReconciliationTask:
    """Pending confirmation work for one record."""

    fingerprint: Fingerprint
    next_attempt_at: datetime
    attempt_count: int = 0
    poll_count: int = 0
    last_error: str | None = None
