"""Application orchestration entry points."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from attestor.adapters.ledger import HttpConfirmationSource
from attestor.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyEvidenceUnitOfWork,
    is_started,
    startup,
)
from attestor.config.reconciliation import ReconciliationConfig, get_reconciliation_config
from attestor.domain.clock import Clock, from_unix_ms, utcnow
from attestor.domain.merge import DiscardReason, MergeEngine
from attestor.domain.model import CandidateSubmission, EvidenceStatus
from attestor.domain.ports.unit_of_work import EvidenceUnitOfWork
from attestor.domain.reconciliation import BackoffPolicy, ReconciliationLoop, TaskOutcome
from attestor.domain.registry import DuplicateFingerprintError, FingerprintRegistry
from attestor.domain.verification import (
    RegistryStats,
    VerificationResult,
    list_by_submitter,
    registry_stats,
    verify,
)

if TYPE_CHECKING:
    from uuid import UUID

    from attestor.domain.merge import MergeOutcome
    from attestor.domain.model import EvidenceRecord, Fingerprint
    from attestor.domain.ports.confirmation import ConfirmationSource
    from attestor.domain.reconciliation import AuditReport, TickReport

UnitOfWorkFactory = Callable[[], EvidenceUnitOfWork]


log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SubmissionReceipt:
    registration_id: UUID
    fingerprint: Fingerprint
    status: EvidenceStatus
    duplicate: bool = False


class AttestationNode:
    """One replica: registry admission, merge engine and reconciliation loop.

    Without a confirmation source the node only admits and answers queries;
    merged records wait in the store until a node with a source recovers them.
    """

    def __init__(
        self,
        *,
        unit_of_work_factory: UnitOfWorkFactory,
        source: ConfirmationSource | None = None,
        config: ReconciliationConfig | None = None,
        clock: Clock = utcnow,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        effective_config = config or ReconciliationConfig()
        self.unit_of_work_factory = unit_of_work_factory
        self.registry = FingerprintRegistry(clock=clock)
        self.merge = MergeEngine.from_store(unit_of_work_factory)
        self.loop: ReconciliationLoop | None = None
        if source is not None:
            self.loop = ReconciliationLoop(
                source=source,
                unit_of_work_factory=unit_of_work_factory,
                backoff=backoff
                or BackoffPolicy(
                    backoff_factor=effective_config.backoff_factor,
                    max_backoff_wait=effective_config.max_backoff_seconds,
                    backoff_jitter=effective_config.backoff_jitter,
                ),
                max_attempts=effective_config.max_attempts,
                attempt_timeout_seconds=effective_config.attempt_timeout_seconds,
                clock=clock,
            )
            self.merge.subscribe(self.loop.schedule)
            self.loop.recover()

    def submit(self, candidate: CandidateSubmission) -> SubmissionReceipt:
        """Admit ``candidate`` and merge it into the local replica.

        Resubmitting an identical payload returns the existing registration;
        a different payload for a known fingerprint raises
        :class:`DuplicateFingerprintError`.
        """

        try:
            record = self.registry.submit(candidate, snapshot=self.merge.snapshot())
        except DuplicateFingerprintError as exc:
            return self._resubmission(candidate, exc.existing)

        outcome = self.merge.apply([record])
        if outcome.accepted:
            merged = outcome.accepted[0]
            log.info("Registered %s as %s", merged.fingerprint, merged.registration_id)
            return SubmissionReceipt(
                registration_id=merged.registration_id,
                fingerprint=merged.fingerprint,
                status=merged.status,
            )

        discarded = outcome.discarded[0]
        if discarded.reason is DiscardReason.DUPLICATE:
            # another batch won the race for this fingerprint
            existing = outcome.state.get(record.fingerprint)
            if existing is not None:
                return self._resubmission(candidate, existing)
        raise RuntimeError(f"Merge discarded {record.fingerprint}: {discarded.detail}")

    def merge_updates(self, updates: Iterable[EvidenceRecord]) -> MergeOutcome:
        """Fold a batch of registrations received from another replica."""
        return self.merge.apply(updates)

    def verify(self, fingerprint: str) -> VerificationResult:
        with self.unit_of_work_factory() as uow:
            return verify(
                fingerprint,
                snapshot=self.merge.snapshot(),
                repository=uow.repositories.evidence,
            )

    def list_by_submitter(self, submitter_id: str) -> list[EvidenceRecord]:
        with self.unit_of_work_factory() as uow:
            return list(list_by_submitter(submitter_id, repository=uow.repositories.evidence))

    def stats(self) -> RegistryStats:
        with self.unit_of_work_factory() as uow:
            return registry_stats(
                snapshot=self.merge.snapshot(), repository=uow.repositories.evidence
            )

    def reconcile_once(self) -> TickReport:
        return self._require_loop().run_once()

    def audit(self) -> AuditReport:
        """Re-check finalized records against the ledger; nothing is rewritten."""
        return self._require_loop().audit_once()

    async def run_reconciliation(self, *, interval: float) -> None:
        await self._require_loop().run(interval=interval)

    def stop(self) -> None:
        if self.loop is not None:
            self.loop.stop()

    def _require_loop(self) -> ReconciliationLoop:
        if self.loop is None:
            raise RuntimeError("Node was built without a confirmation source")
        return self.loop

    @staticmethod
    def _resubmission(
        candidate: CandidateSubmission, existing: EvidenceRecord
    ) -> SubmissionReceipt:
        if not existing.matches(candidate):
            raise DuplicateFingerprintError(existing)
        log.info("Idempotent resubmission of %s", existing.fingerprint)
        return SubmissionReceipt(
            registration_id=existing.registration_id,
            fingerprint=existing.fingerprint,
            status=existing.status,
            duplicate=True,
        )


def build_node(
    *,
    source: ConfirmationSource | None = None,
    with_ledger: bool = False,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: ReconciliationConfig | None = None,
) -> AttestationNode:
    """Build a node over the configured database (and ledger, if requested)."""

    if unit_of_work_factory is None:
        if not is_started():
            startup()
        unit_of_work_factory = SqlAlchemyEvidenceUnitOfWork
    effective_source = source or (HttpConfirmationSource() if with_ledger else None)
    return AttestationNode(
        unit_of_work_factory=unit_of_work_factory,
        source=effective_source,
        config=config or get_reconciliation_config(),
    )


def submit_evidence(
    *,
    fingerprint: str,
    submitter_id: str,
    captured_at_ms: int,
    origin_url: str,
    title: str,
    node: AttestationNode | None = None,
) -> SubmissionReceipt:
    """Register a capture; ``captured_at_ms`` is Unix time in milliseconds."""

    effective_node = node or build_node()
    candidate = CandidateSubmission(
        fingerprint=fingerprint,
        submitter_id=submitter_id,
        captured_at=from_unix_ms(captured_at_ms),
        origin_url=origin_url,
        title=title,
    )
    return effective_node.submit(candidate)


def verify_fingerprint(
    fingerprint: str, *, node: AttestationNode | None = None
) -> VerificationResult:
    return (node or build_node()).verify(fingerprint)


def list_submissions(
    submitter_id: str, *, node: AttestationNode | None = None
) -> list[EvidenceRecord]:
    return (node or build_node()).list_by_submitter(submitter_id)


def registry_overview(*, node: AttestationNode | None = None) -> RegistryStats:
    return (node or build_node()).stats()


def reconcile_once(*, node: AttestationNode | None = None) -> TickReport:
    effective_node = node or build_node(with_ledger=True)
    report = effective_node.reconcile_once()
    log.info(
        "Reconciliation pass finished: processed=%s, finalized=%s, errored=%s",
        report.processed,
        len(report.with_outcome(TaskOutcome.FINALIZED)),
        len(report.with_outcome(TaskOutcome.ERRORED)),
    )
    return report


def audit_ledger(*, node: AttestationNode | None = None) -> AuditReport:
    effective_node = node or build_node(with_ledger=True)
    report = effective_node.audit()
    log.info(
        "Ledger audit finished: checked=%s, issues=%s", report.checked, len(report.issues)
    )
    return report


async def run_reconciliation(*, node: AttestationNode, interval: float) -> None:
    """Run the loop until the node is stopped."""

    await node.run_reconciliation(interval=interval)
