"""Status state machine for evidence records.

``pending -> submitted -> awaiting_confirmation -> {finalized | errored}``
with ``errored`` also reachable straight from ``submitted``.
"""

from __future__ import annotations

from typing import Final

from attestor.domain.model import EvidenceStatus

ALLOWED_TRANSITIONS: Final[dict[EvidenceStatus, frozenset[EvidenceStatus]]] = {
    EvidenceStatus.PENDING: frozenset({EvidenceStatus.SUBMITTED}),
    EvidenceStatus.SUBMITTED: frozenset(
        {EvidenceStatus.AWAITING_CONFIRMATION, EvidenceStatus.ERRORED}
    ),
    EvidenceStatus.AWAITING_CONFIRMATION: frozenset(
        {
            # confirmation count refresh while still waiting
            EvidenceStatus.AWAITING_CONFIRMATION,
            EvidenceStatus.FINALIZED,
            EvidenceStatus.ERRORED,
        }
    ),
    EvidenceStatus.FINALIZED: frozenset(),
    EvidenceStatus.ERRORED: frozenset(),
}


class InvalidTransitionError(ValueError):
    """Raised when a status change would move a record backwards or out of a terminal state."""

    def __init__(self, current: EvidenceStatus, new: EvidenceStatus) -> None:
        super().__init__(f"Illegal status transition {current.value} -> {new.value}")
        self.current = current
        self.new = new


def can_transition(current: EvidenceStatus, new: EvidenceStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: EvidenceStatus, new: EvidenceStatus) -> None:
    if not can_transition(current, new):
        raise InvalidTransitionError(current, new)
