"""Deterministic fold of candidate updates into the replicated registry.

Responsibilities of this stage:
- order a batch by ``(captured_at, fingerprint)`` before applying it
- enforce first-writer-wins per fingerprint (authoritative dedup point)
- move accepted records from ``pending`` to ``submitted``
- never perform I/O in :func:`fold_updates` / :func:`combine`

:class:`MergeEngine` is the single owner of the mutable state reference. It
serialises batches, persists accepted records and publishes the next snapshot.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from threading import Lock
from typing import TYPE_CHECKING

from attestor.domain.model import EvidenceRecord, EvidenceStatus, ReplicaState
from attestor.domain.registry import is_valid_fingerprint

if TYPE_CHECKING:
    from datetime import datetime

    from attestor.domain.model import Fingerprint
    from attestor.domain.ports.unit_of_work import EvidenceUnitOfWork

log = getLogger(__name__)

type CandidateUpdate = EvidenceRecord
type AcceptedListener = Callable[[Sequence[EvidenceRecord]], None]


class MergeInvariantError(RuntimeError):
    """The fold produced an inconsistent registry; the batch is not applied."""


class DiscardReason(StrEnum):
    DUPLICATE = "duplicate"
    MALFORMED = "malformed"


@dataclass(frozen=True, slots=True)
class DiscardedUpdate:
    update: object
    reason: DiscardReason
    detail: str


@dataclass(frozen=True, slots=True)
class MergeOutcome:
    state: ReplicaState
    accepted: tuple[EvidenceRecord, ...] = ()
    discarded: tuple[DiscardedUpdate, ...] = ()


def merge_order_key(update: CandidateUpdate) -> tuple[datetime, Fingerprint, datetime, str]:
    """Total order used to apply a batch.

    ``captured_at`` then fingerprint decide; creation time and registration id
    only break ties between competing updates for the same fingerprint.
    """
    return (update.captured_at, update.fingerprint, update.created_at, str(update.registration_id))


def _malformed_reason(update: object) -> str | None:
    if not isinstance(update, EvidenceRecord):
        return f"unexpected update type {type(update).__name__}"
    if not is_valid_fingerprint(update.fingerprint) or update.fingerprint != update.fingerprint.lower():
        return "fingerprint is not canonical"
    if update.status is not EvidenceStatus.PENDING:
        return f"status is {update.status.value}, expected pending"
    if update.captured_at.tzinfo is None or update.created_at.tzinfo is None:
        return "timestamps must be timezone aware"
    return None


def fold_updates(current: ReplicaState, updates: Iterable[object]) -> MergeOutcome:
    """Fold ``updates`` into ``current`` and report what happened to each one."""

    discarded: list[DiscardedUpdate] = []
    well_formed: list[CandidateUpdate] = []
    for update in updates:
        reason = _malformed_reason(update)
        if reason is not None:
            log.warning("Discarding malformed update: %s", reason)
            discarded.append(DiscardedUpdate(update, DiscardReason.MALFORMED, reason))
            continue
        well_formed.append(update)  # type: ignore[arg-type]

    registry: dict[Fingerprint, EvidenceRecord] = dict(current.registry)
    sequence = current.last_merged_sequence
    accepted: list[EvidenceRecord] = []

    for update in sorted(well_formed, key=merge_order_key):
        if update.fingerprint in registry:
            log.debug("Discarding duplicate update for %s", update.fingerprint)
            discarded.append(
                DiscardedUpdate(update, DiscardReason.DUPLICATE, "fingerprint already registered")
            )
            continue
        record = update.evolve(status=EvidenceStatus.SUBMITTED, at=update.updated_at)
        registry[record.fingerprint] = record
        accepted.append(record)
        sequence += 1

    _check_invariants(current, registry=registry, accepted=accepted, sequence=sequence)
    return MergeOutcome(
        state=ReplicaState(registry=registry, last_merged_sequence=sequence),
        accepted=tuple(accepted),
        discarded=tuple(discarded),
    )


def combine(current: ReplicaState, updates: Iterable[CandidateUpdate]) -> ReplicaState:
    """Return the next replica state; pure and order-independent."""
    return fold_updates(current, updates).state


def _check_invariants(
    current: ReplicaState,
    *,
    registry: dict[Fingerprint, EvidenceRecord],
    accepted: list[EvidenceRecord],
    sequence: int,
) -> None:
    if len(registry) != current.total_count + len(accepted):
        raise MergeInvariantError(
            f"Registry size {len(registry)} does not match "
            f"{current.total_count} prior + {len(accepted)} accepted records"
        )
    if len({record.fingerprint for record in accepted}) != len(accepted):
        raise MergeInvariantError("Batch accepted the same fingerprint twice")
    if sequence != current.last_merged_sequence + len(accepted):
        raise MergeInvariantError("Merge sequence drifted from accepted count")
    for fingerprint, record in current.registry.items():
        if registry.get(fingerprint) is not record:
            raise MergeInvariantError(f"Existing record for {fingerprint} was replaced")


@dataclass(slots=True, eq=False)
class _QueuedBatch:
    updates: tuple[object, ...]
    outcome: MergeOutcome | None = None
    error: BaseException | None = None
    done: bool = False


def _split_outcome(outcome: MergeOutcome, batches: Sequence[_QueuedBatch]) -> list[MergeOutcome]:
    """Attribute accepted and discarded entries of a coalesced fold to their batches."""

    occurrences: dict[int, tuple[object, deque[int]]] = {}
    for index, batch in enumerate(batches):
        for update in batch.updates:
            occurrences.setdefault(id(update), (update, deque[int]()))[1].append(index)

    discarded: list[list[DiscardedUpdate]] = [[] for _ in batches]
    for entry in outcome.discarded:
        owner = occurrences[id(entry.update)][1].popleft()
        discarded[owner].append(entry)

    accepted_owner: dict[Fingerprint, int] = {}
    for update, owners in occurrences.values():
        if owners and isinstance(update, EvidenceRecord):
            accepted_owner[update.fingerprint] = owners[0]
    accepted: list[list[EvidenceRecord]] = [[] for _ in batches]
    for record in outcome.accepted:
        accepted[accepted_owner[record.fingerprint]].append(record)

    return [
        MergeOutcome(
            state=outcome.state,
            accepted=tuple(accepted[index]),
            discarded=tuple(discarded[index]),
        )
        for index in range(len(batches))
    ]


@dataclass(slots=True, eq=False)
class MergeEngine:
    """Owner of the replica state.

    Whichever caller holds the merge lock drains every batch queued so far and
    folds them together, so updates that are pending at the same time converge
    on the smallest merge key whatever their arrival order. A batch that arrives
    after a fingerprint was merged loses to the registered record.
    """

    unit_of_work_factory: Callable[[], EvidenceUnitOfWork] | None = None
    state: ReplicaState = field(default_factory=ReplicaState.genesis)
    listeners: list[AcceptedListener] = field(default_factory=list["AcceptedListener"])
    _pending: deque[_QueuedBatch] = field(default_factory=deque["_QueuedBatch"], init=False)
    _queue_lock: Lock = field(default_factory=Lock, init=False)
    _merge_lock: Lock = field(default_factory=Lock, init=False)

    @classmethod
    def from_store(cls, unit_of_work_factory: Callable[[], EvidenceUnitOfWork]) -> MergeEngine:
        """Build an engine whose state mirrors every persisted record."""

        with unit_of_work_factory() as uow:
            records = uow.repositories.evidence.all()
        state = ReplicaState.from_records(records)
        log.info("Hydrated replica state with %s records", state.total_count)
        return cls(unit_of_work_factory=unit_of_work_factory, state=state)

    @property
    def backlog(self) -> int:
        """Batches waiting for the merge lock."""
        with self._queue_lock:
            return len(self._pending)

    def snapshot(self) -> ReplicaState:
        return self.state

    def subscribe(self, listener: AcceptedListener) -> None:
        self.listeners.append(listener)

    def apply(self, updates: Iterable[CandidateUpdate]) -> MergeOutcome:
        """Queue ``updates`` as one batch and return its outcome once applied."""

        batch = _QueuedBatch(updates=tuple(updates))
        with self._queue_lock:
            self._pending.append(batch)
        with self._merge_lock:
            while not batch.done:
                with self._queue_lock:
                    queued = list(self._pending)
                    self._pending.clear()
                self._run(queued)
        if batch.error is not None:
            raise batch.error
        if batch.outcome is None:
            raise MergeInvariantError("Batch finished without an outcome")
        return batch.outcome

    def _run(self, batches: Sequence[_QueuedBatch]) -> None:
        try:
            outcome = fold_updates(
                self.state, [update for batch in batches for update in batch.updates]
            )
            self._persist(outcome.accepted)
        except MergeInvariantError as exc:
            log.critical("Merge invariant violated, %s batches halted: %s", len(batches), exc)
            for batch in batches:
                batch.error = exc
        except Exception as exc:  # noqa: BLE001
            log.exception("Failed to apply %s merge batches", len(batches))
            for batch in batches:
                batch.error = exc
        else:
            self.state = outcome.state
            for batch, split in zip(batches, _split_outcome(outcome, batches), strict=True):
                batch.outcome = split
            if outcome.accepted:
                log.info(
                    "Merged %s records from %s batches (sequence=%s, total=%s)",
                    len(outcome.accepted),
                    len(batches),
                    outcome.state.last_merged_sequence,
                    outcome.state.total_count,
                )
                for listener in self.listeners:
                    listener(outcome.accepted)
        finally:
            for batch in batches:
                batch.done = True

    def _persist(self, accepted: Sequence[EvidenceRecord]) -> None:
        if not accepted or self.unit_of_work_factory is None:
            return
        with self.unit_of_work_factory() as uow:
            for record in accepted:
                uow.repositories.evidence.add(record)
            uow.commit()
