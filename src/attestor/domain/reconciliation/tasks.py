"""In-memory queue of reconciliation tasks keyed by fingerprint."""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from typing import TYPE_CHECKING

from attestor.domain.model import ReconciliationTask

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime

    from attestor.domain.model import Fingerprint


@dataclass(slots=True, eq=False)
class TaskQueue:
    """Tasks are added from merge threads and consumed by the loop."""

    _tasks: dict[Fingerprint, ReconciliationTask] = field(
        default_factory=dict["Fingerprint", ReconciliationTask]
    )
    _lock: Lock = field(default_factory=Lock)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._tasks

    def __iter__(self) -> Iterator[ReconciliationTask]:
        with self._lock:
            return iter(list(self._tasks.values()))

    def get(self, fingerprint: Fingerprint) -> ReconciliationTask | None:
        return self._tasks.get(fingerprint)

    def schedule(self, fingerprint: Fingerprint, *, at: datetime) -> ReconciliationTask:
        """Add a task for ``fingerprint`` unless one is already queued."""
        return self.adopt(ReconciliationTask(fingerprint=fingerprint, next_attempt_at=at))

    def adopt(self, task: ReconciliationTask) -> ReconciliationTask:
        """Queue a task restored from storage; an already queued task wins."""

        with self._lock:
            return self._tasks.setdefault(task.fingerprint, task)

    def remove(self, fingerprint: Fingerprint) -> None:
        with self._lock:
            self._tasks.pop(fingerprint, None)

    def due(self, now: datetime) -> list[ReconciliationTask]:
        with self._lock:
            ready = [task for task in self._tasks.values() if task.next_attempt_at <= now]
        return sorted(ready, key=lambda task: (task.next_attempt_at, task.fingerprint))
