"""Drive submitted records to a terminal status.

Each tick picks up in-flight records written by other processes, then fans
out one bounded-time attempt per due task. An attempt either obtains a ledger
reference (``submitted -> awaiting_confirmation``) or polls the ledger for an
existing reference. Transient failures consume the retry budget; an explicit
rejection ends the record immediately. Task bookkeeping is persisted after
every attempt, so the budget survives restarts and one-shot runs.

Store access runs in worker threads: a slow database call is bounded by the
attempt timeout like any ledger call.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from attestor.domain.clock import Clock, utcnow
from attestor.domain.model import (
    IN_FLIGHT_STATUSES,
    ConfirmationState,
    EvidenceStatus,
    ReconciliationTask,
)
from attestor.domain.ports.confirmation import (
    RejectedConfirmationError,
    SubmissionPayload,
    TransientConfirmationError,
)

from .audit import AuditReport, audit_records
from .backoff import BackoffPolicy
from .tasks import TaskQueue
from .transitions import ensure_transition

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Sequence
    from datetime import datetime

    from attestor.domain.model import EvidenceRecord, Fingerprint
    from attestor.domain.ports.confirmation import ConfirmationSource
    from attestor.domain.ports.unit_of_work import EvidenceUnitOfWork

log = getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_ATTEMPT_TIMEOUT_SECONDS = 10.0


class TaskOutcome(StrEnum):
    SUBMITTED = "submitted"
    RESCHEDULED = "rescheduled"
    FINALIZED = "finalized"
    ERRORED = "errored"
    DROPPED = "dropped"


@dataclass(slots=True)
class TickReport:
    """Outcome of one scheduler tick."""

    outcomes: dict[Fingerprint, TaskOutcome] = field(
        default_factory=dict["Fingerprint", TaskOutcome]
    )

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    def with_outcome(self, outcome: TaskOutcome) -> list[Fingerprint]:
        return sorted(fp for fp, value in self.outcomes.items() if value is outcome)


class ReconciliationLoop:
    def __init__(
        self,
        *,
        source: ConfirmationSource,
        unit_of_work_factory: Callable[[], EvidenceUnitOfWork],
        backoff: BackoffPolicy | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        attempt_timeout_seconds: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
        clock: Clock = utcnow,
        queue: TaskQueue | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if attempt_timeout_seconds <= 0:
            raise ValueError("attempt_timeout_seconds must be positive")
        self.source = source
        self.unit_of_work_factory = unit_of_work_factory
        self.backoff = backoff or BackoffPolicy()
        self.max_attempts = max_attempts
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self.clock = clock
        self.queue = queue or TaskQueue()
        self._stopping: asyncio.Event | None = None
        self._event_loop: asyncio.AbstractEventLoop | None = None

    # Scheduling -------------------------------------------------------------

    def schedule(self, records: Sequence[EvidenceRecord]) -> None:
        """Queue work for freshly merged records (merge engine listener)."""

        now = self.clock()
        for record in records:
            if record.status in IN_FLIGHT_STATUSES:
                self.queue.schedule(record.fingerprint, at=now)

    def recover(self) -> int:
        """Rebuild the queue from the store after a restart."""

        in_flight = self._pick_up_in_flight(self.clock())
        log.info("Recovered %s reconciliation tasks", in_flight)
        return in_flight

    def run_once(self) -> TickReport:
        return asyncio.run(self._closing_source(self.tick()))

    async def run(self, *, interval: float) -> None:
        """Tick every ``interval`` seconds until :meth:`stop` is called.

        A stop request takes effect between ticks, so in-flight checks finish
        or time out before the loop returns.
        """

        self._event_loop = asyncio.get_running_loop()
        self._stopping = asyncio.Event()
        log.info("Reconciliation loop started (interval=%ss)", interval)
        try:
            while not self._stopping.is_set():
                try:
                    await self.tick()
                except Exception:
                    log.exception("Reconciliation tick failed")
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stopping.wait(), timeout=interval)
        finally:
            self._stopping = None
            self._event_loop = None
            await self.source.aclose()
            log.info("Reconciliation loop stopped")

    def stop(self) -> None:
        """Request shutdown; safe to call from other threads and signal handlers."""

        if self._stopping is None or self._event_loop is None:
            return
        self._event_loop.call_soon_threadsafe(self._stopping.set)

    # Audit ------------------------------------------------------------------

    async def audit(self) -> AuditReport:
        """Re-check finalized records against the ledger without changing them."""

        records = await asyncio.to_thread(self._all_records)
        report = await audit_records(
            records, source=self.source, attempt_timeout_seconds=self.attempt_timeout_seconds
        )
        if report.consistent:
            log.info("Audit checked %s finalized records, no drift", report.checked)
        else:
            log.warning(
                "Audit checked %s finalized records, found %s issues",
                report.checked,
                len(report.issues),
            )
        return report

    def audit_once(self) -> AuditReport:
        return asyncio.run(self._closing_source(self.audit()))

    async def _closing_source[T](self, work: Coroutine[object, object, T]) -> T:
        try:
            return await work
        finally:
            await self.source.aclose()

    # Tick -------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> TickReport:
        effective_now = now or self.clock()
        await asyncio.to_thread(self._pick_up_in_flight, effective_now)
        due = self.queue.due(effective_now)
        report = TickReport()
        if not due:
            return report

        log.debug("Reconciling %s due tasks", len(due))
        results = await asyncio.gather(
            *(self._reconcile(task, effective_now) for task in due),
            return_exceptions=True,
        )

        failures: list[Exception] = []
        for task, result in zip(due, results, strict=True):
            if isinstance(result, TaskOutcome):
                report.outcomes[task.fingerprint] = result
            elif isinstance(result, Exception):
                log.error("Unexpected failure reconciling %s: %r", task.fingerprint, result)
                failures.append(result)
            else:
                raise result
        if failures:
            raise ExceptionGroup("Reconciliation tick had unexpected failures", failures)
        return report

    async def _reconcile(self, task: ReconciliationTask, now: datetime) -> TaskOutcome:
        outcome = await self._bounded_attempt(task, now)
        await asyncio.to_thread(self._save_task, task)
        return outcome

    async def _bounded_attempt(self, task: ReconciliationTask, now: datetime) -> TaskOutcome:
        try:
            async with asyncio.timeout(self.attempt_timeout_seconds):
                return await self._attempt(task, now)
        except TimeoutError:
            return await self._record_transient_failure(
                task, now, f"Timed out after {self.attempt_timeout_seconds}s"
            )
        except TransientConfirmationError as exc:
            return await self._record_transient_failure(
                task, now, str(exc) or type(exc).__name__
            )
        except RejectedConfirmationError as exc:
            log.warning("Ledger rejected %s: %s", task.fingerprint, exc)
            return await self._mark_errored(task, now, f"Rejected by ledger: {exc}")

    async def _attempt(self, task: ReconciliationTask, now: datetime) -> TaskOutcome:
        record = await self._load(task.fingerprint)
        if record is None or record.is_terminal:
            return self._drop(task, record)

        if record.status is EvidenceStatus.SUBMITTED:
            reference = record.ledger_reference or await self._obtain_reference(record)
            updated = record.evolve(
                status=EvidenceStatus.AWAITING_CONFIRMATION,
                at=now,
                ledger_reference=reference,
            )
            if not await self._write(record, updated):
                return await self._after_lost_race(task, now)
            log.info("Submitted %s to ledger as %s", record.fingerprint, reference)
            self._reschedule(task, now, step=0)
            task.attempt_count = 0
            task.last_error = None
            return TaskOutcome.SUBMITTED

        if record.ledger_reference is None:
            raise RuntimeError(f"Record {record.fingerprint} awaits confirmation without reference")

        status = await self.source.check_status(record.ledger_reference)
        task.attempt_count = 0
        task.last_error = None

        if status.state is ConfirmationState.REJECTED:
            reason = status.detail or "ledger rejected the submission"
            return await self._mark_errored(task, now, f"Rejected by ledger: {reason}")

        if status.state is ConfirmationState.FINAL:
            updated = record.evolve(
                status=EvidenceStatus.FINALIZED,
                at=now,
                confirmation_count=max(record.confirmation_count, status.confirmations, 1),
                error_info=None,
            )
            if not await self._write(record, updated):
                return await self._after_lost_race(task, now)
            self.queue.remove(task.fingerprint)
            log.info(
                "Finalized %s with %s confirmations", record.fingerprint, updated.confirmation_count
            )
            return TaskOutcome.FINALIZED

        if status.confirmations > record.confirmation_count:
            updated = record.evolve(
                status=EvidenceStatus.AWAITING_CONFIRMATION,
                at=now,
                confirmation_count=status.confirmations,
            )
            if not await self._write(record, updated):
                return await self._after_lost_race(task, now)
        self._reschedule(task, now, step=task.poll_count)
        task.poll_count += 1
        return TaskOutcome.RESCHEDULED

    async def _obtain_reference(self, record: EvidenceRecord) -> str:
        # a previous attempt may have reached the ledger before failing locally
        existing = await self.source.find_reference(record.fingerprint)
        if existing is not None:
            log.info("Reusing existing ledger reference for %s", record.fingerprint)
            return existing
        return await self.source.submit_fingerprint(SubmissionPayload.from_record(record))

    # Failure paths ----------------------------------------------------------

    async def _record_transient_failure(
        self, task: ReconciliationTask, now: datetime, error: str
    ) -> TaskOutcome:
        task.attempt_count += 1
        task.last_error = error
        if task.attempt_count >= self.max_attempts:
            log.error(
                "Giving up on %s after %s attempts: %s", task.fingerprint, task.attempt_count, error
            )
            return await self._mark_errored(
                task, now, f"Retry budget exhausted after {task.attempt_count} attempts: {error}"
            )
        self._reschedule(task, now, step=task.attempt_count - 1)
        log.warning(
            "Transient failure for %s (attempt %s/%s): %s",
            task.fingerprint,
            task.attempt_count,
            self.max_attempts,
            error,
        )
        return TaskOutcome.RESCHEDULED

    async def _mark_errored(
        self, task: ReconciliationTask, now: datetime, reason: str
    ) -> TaskOutcome:
        record = await self._load(task.fingerprint)
        if record is None or record.is_terminal:
            return self._drop(task, record)
        updated = record.evolve(status=EvidenceStatus.ERRORED, at=now, error_info=reason)
        if not await self._write(record, updated):
            return await self._after_lost_race(task, now)
        self.queue.remove(task.fingerprint)
        return TaskOutcome.ERRORED

    async def _after_lost_race(self, task: ReconciliationTask, now: datetime) -> TaskOutcome:
        record = await self._load(task.fingerprint)
        if record is None or record.is_terminal:
            return self._drop(task, record)
        log.info("Status of %s changed concurrently; retrying later", task.fingerprint)
        self._reschedule(task, now, step=0)
        return TaskOutcome.RESCHEDULED

    def _drop(self, task: ReconciliationTask, record: EvidenceRecord | None) -> TaskOutcome:
        if record is None:
            log.error("No persisted record for task %s; dropping it", task.fingerprint)
        self.queue.remove(task.fingerprint)
        return TaskOutcome.DROPPED

    # Persistence ------------------------------------------------------------

    def _reschedule(self, task: ReconciliationTask, now: datetime, *, step: int) -> None:
        task.next_attempt_at = now + self.backoff.delay(step)

    async def _load(self, fingerprint: Fingerprint) -> EvidenceRecord | None:
        return await asyncio.to_thread(self._read_record, fingerprint)

    async def _write(self, current: EvidenceRecord, updated: EvidenceRecord) -> bool:
        ensure_transition(current.status, updated.status)
        return await asyncio.to_thread(self._swap_record, current, updated)

    def _read_record(self, fingerprint: Fingerprint) -> EvidenceRecord | None:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.evidence.get(fingerprint)

    def _swap_record(self, current: EvidenceRecord, updated: EvidenceRecord) -> bool:
        with self.unit_of_work_factory() as uow:
            swapped = uow.repositories.evidence.compare_and_set_status(
                current.fingerprint, current.status, updated
            )
            if swapped:
                uow.commit()
        return swapped

    def _save_task(self, task: ReconciliationTask) -> None:
        with self.unit_of_work_factory() as uow:
            if task.fingerprint in self.queue:
                uow.repositories.tasks.save(task)
            else:
                uow.repositories.tasks.delete(task.fingerprint)
            uow.commit()

    def _pick_up_in_flight(self, now: datetime) -> int:
        """Queue in-flight records missing from the queue, restoring saved tasks."""

        with self.unit_of_work_factory() as uow:
            records = uow.repositories.evidence.list_by_status(*IN_FLIGHT_STATUSES)
            saved = {task.fingerprint: task for task in uow.repositories.tasks.all()}

        picked_up = 0
        for record in records:
            if record.fingerprint in self.queue:
                continue
            task = saved.get(record.fingerprint) or ReconciliationTask(
                fingerprint=record.fingerprint, next_attempt_at=now
            )
            self.queue.adopt(task)
            picked_up += 1
        if picked_up:
            log.debug("Picked up %s in-flight records from the store", picked_up)
        return len(records)

    def _all_records(self) -> Sequence[EvidenceRecord]:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.evidence.all()
