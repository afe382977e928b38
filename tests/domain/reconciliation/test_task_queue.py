from __future__ import annotations

from datetime import timedelta

from attestor.domain.model import ReconciliationTask
from attestor.domain.reconciliation import TaskQueue
from tests.helpers.evidence import BASE_TIME, make_fingerprint


def test_schedule_is_idempotent_per_fingerprint() -> None:
    queue = TaskQueue()
    fingerprint = make_fingerprint("a1")

    first = queue.schedule(fingerprint, at=BASE_TIME)
    first.attempt_count = 2
    second = queue.schedule(fingerprint, at=BASE_TIME + timedelta(hours=1))

    assert second is first
    assert second.next_attempt_at == BASE_TIME
    assert len(queue) == 1


def test_due_returns_tasks_in_schedule_then_fingerprint_order() -> None:
    queue = TaskQueue()
    queue.schedule(make_fingerprint("c3"), at=BASE_TIME)
    queue.schedule(make_fingerprint("a1"), at=BASE_TIME)
    queue.schedule(make_fingerprint("b2"), at=BASE_TIME - timedelta(seconds=1))
    queue.schedule(make_fingerprint("d4"), at=BASE_TIME + timedelta(seconds=1))

    due = [task.fingerprint for task in queue.due(BASE_TIME)]

    assert due == [make_fingerprint("b2"), make_fingerprint("a1"), make_fingerprint("c3")]


def test_remove_is_silent_for_unknown_fingerprints() -> None:
    queue = TaskQueue()
    fingerprint = make_fingerprint("a1")
    queue.schedule(fingerprint, at=BASE_TIME)

    queue.remove(fingerprint)
    queue.remove(fingerprint)

    assert fingerprint not in queue
    assert queue.get(fingerprint) is None


def test_adopt_keeps_restored_bookkeeping_unless_already_queued() -> None:
    queue = TaskQueue()
    restored = ReconciliationTask(
        fingerprint=make_fingerprint("a1"),
        next_attempt_at=BASE_TIME + timedelta(seconds=8),
        attempt_count=3,
        last_error="503",
    )

    assert queue.adopt(restored) is restored
    stale = ReconciliationTask(fingerprint=make_fingerprint("a1"), next_attempt_at=BASE_TIME)
    assert queue.adopt(stale) is restored
    assert queue.due(BASE_TIME) == []
