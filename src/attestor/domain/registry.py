"""Admission control for candidate registrations.

The registry validates a candidate and checks it against a replica snapshot.
It never writes state: an accepted candidate comes back as a ``Pending``
record that the caller hands to the merge engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Final

from attestor.domain.clock import Clock, utcnow
from attestor.domain.model import (
    CandidateSubmission,
    EvidenceRecord,
    EvidenceStatus,
    RegistryErrorCode,
)

if TYPE_CHECKING:
    from attestor.domain.model import Fingerprint, ReplicaState

log = getLogger(__name__)

FINGERPRINT_LENGTH: Final[int] = 64
MAX_TITLE_LENGTH: Final[int] = 500
MAX_ORIGIN_URL_LENGTH: Final[int] = 2048

_FINGERPRINT_PATTERN: Final[re.Pattern[str]] = re.compile(r"[0-9a-fA-F]{64}")
_EPOCH: Final[datetime] = datetime.fromtimestamp(0, tz=UTC)


class RegistryError(ValueError):
    """Base class for synchronous admission failures."""

    code: RegistryErrorCode

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidFingerprintFormatError(RegistryError):
    code = RegistryErrorCode.INVALID_FINGERPRINT_FORMAT


class InvalidTimestampError(RegistryError):
    code = RegistryErrorCode.INVALID_TIMESTAMP


class InvalidMetadataError(RegistryError):
    code = RegistryErrorCode.INVALID_METADATA


class DuplicateFingerprintError(RegistryError):
    code = RegistryErrorCode.DUPLICATE_FINGERPRINT

    def __init__(self, existing: EvidenceRecord) -> None:
        super().__init__(f"Fingerprint already registered: {existing.fingerprint}")
        self.existing = existing


def is_valid_fingerprint(value: object) -> bool:
    return isinstance(value, str) and _FINGERPRINT_PATTERN.fullmatch(value) is not None


def normalize_fingerprint(value: str) -> Fingerprint:
    """Return the canonical (lower-case) form of ``value`` or raise."""

    if not is_valid_fingerprint(value):
        raise InvalidFingerprintFormatError(
            f"Fingerprint must be {FINGERPRINT_LENGTH} hexadecimal characters"
        )
    return value.lower()


@dataclass(slots=True)
class FingerprintRegistry:
    clock: Clock = utcnow
    max_title_length: int = MAX_TITLE_LENGTH
    max_origin_url_length: int = MAX_ORIGIN_URL_LENGTH

    def submit(self, candidate: CandidateSubmission, *, snapshot: ReplicaState) -> EvidenceRecord:
        """Validate ``candidate`` against ``snapshot`` and build a pending record.

        Raises a :class:`RegistryError` subclass; checks run in the order
        format, timestamp, metadata, uniqueness.
        """

        fingerprint = normalize_fingerprint(candidate.fingerprint)
        now = self.clock()
        captured_at = self._validate_captured_at(candidate.captured_at, now=now)
        self._validate_metadata(candidate)

        existing = snapshot.get(fingerprint)
        if existing is not None:
            log.debug("Rejecting duplicate fingerprint %s", fingerprint)
            raise DuplicateFingerprintError(existing)

        return EvidenceRecord(
            fingerprint=fingerprint,
            submitter_id=candidate.submitter_id,
            captured_at=captured_at,
            origin_url=candidate.origin_url.strip(),
            title=candidate.title.strip(),
            status=EvidenceStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    def _validate_captured_at(self, captured_at: datetime, *, now: datetime) -> datetime:
        if captured_at.tzinfo is None:
            raise InvalidTimestampError("captured_at must include timezone information")
        captured_at = captured_at.astimezone(UTC)
        if captured_at <= _EPOCH:
            raise InvalidTimestampError("captured_at must be after the Unix epoch")
        if captured_at > now:
            raise InvalidTimestampError("captured_at lies in the future")
        return captured_at

    def _validate_metadata(self, candidate: CandidateSubmission) -> None:
        if not candidate.submitter_id.strip():
            raise InvalidMetadataError("submitter_id must not be empty")
        origin_url = candidate.origin_url.strip()
        if not origin_url:
            raise InvalidMetadataError("origin_url must not be empty")
        if len(origin_url) > self.max_origin_url_length:
            raise InvalidMetadataError(
                f"origin_url exceeds {self.max_origin_url_length} characters"
            )
        title = candidate.title.strip()
        if not title:
            raise InvalidMetadataError("title must not be empty")
        if len(title) > self.max_title_length:
            raise InvalidMetadataError(f"title exceeds {self.max_title_length} characters")
