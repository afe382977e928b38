"""Ports for the external ledger that confirms submitted fingerprints."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from attestor.domain.model import ConfirmationState

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from attestor.domain.model import EvidenceRecord, Fingerprint


class ConfirmationError(RuntimeError):
    """Base class for failures reported by a confirmation source."""


class TransientConfirmationError(ConfirmationError):
    """Timeout, network failure or temporary unavailability; retry later."""


class RejectedConfirmationError(ConfirmationError):
    """The ledger refused the submission; retrying cannot help."""


@dataclass(frozen=True, slots=True, kw_only=True)
class SubmissionPayload:
    """What gets anchored on the ledger for one record."""

    fingerprint: Fingerprint
    registration_id: UUID
    submitter_id: str
    captured_at: datetime
    title: str

    @classmethod
    def from_record(cls, record: EvidenceRecord) -> SubmissionPayload:
        return cls(
            fingerprint=record.fingerprint,
            registration_id=record.registration_id,
            submitter_id=record.submitter_id,
            captured_at=record.captured_at,
            title=record.title,
        )


@dataclass(frozen=True, slots=True)
class ConfirmationStatus:
    state: ConfirmationState
    confirmations: int = 0
    detail: str | None = None


@runtime_checkable
class ConfirmationSource(Protocol):
    """Async port to the ledger.

    Implementations raise :class:`TransientConfirmationError` for retryable
    failures and :class:`RejectedConfirmationError` for permanent ones.
    """

    async def submit_fingerprint(self, payload: SubmissionPayload) -> str: ...

    async def check_status(self, ledger_reference: str) -> ConfirmationStatus: ...

    async def find_reference(self, fingerprint: Fingerprint) -> str | None: ...

    async def aclose(self) -> None:
        """Release connections; the loop calls this when a run ends."""
        ...
