"""Ports for persisting evidence records."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from attestor.domain.model import EvidenceRecord

if TYPE_CHECKING:
    from collections.abc import Sequence

    from attestor.domain.model import EvidenceStatus, Fingerprint, ReconciliationTask


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class EvidenceRepository(Repository[EvidenceRecord], Protocol):
    """Keyed store of evidence records with a status index.

    Status writes go through :meth:`compare_and_set_status` only, so two
    concurrent writers for the same fingerprint cannot lose an update.
    """

    def get(self, fingerprint: Fingerprint) -> EvidenceRecord | None: ...

    def compare_and_set_status(
        self,
        fingerprint: Fingerprint,
        expected: EvidenceStatus,
        record: EvidenceRecord,
    ) -> bool: ...

    def list_by_status(self, *statuses: EvidenceStatus) -> Sequence[EvidenceRecord]: ...

    def list_by_submitter(self, submitter_id: str) -> Sequence[EvidenceRecord]: ...

    def all(self) -> Sequence[EvidenceRecord]: ...


@runtime_checkable
class ReconciliationTaskRepository(Protocol):
    """Retry bookkeeping for in-flight records, kept across process restarts."""

    def get(self, fingerprint: Fingerprint) -> ReconciliationTask | None: ...

    def save(self, task: ReconciliationTask) -> None: ...

    def delete(self, fingerprint: Fingerprint) -> None: ...

    def all(self) -> Sequence[ReconciliationTask]: ...
