"""Reconciliation of locally persisted status with the external ledger.

Layered flow per due task:
1) reload the persisted record (terminal or missing records are dropped)
2) obtain a ledger reference for ``submitted`` records
3) poll the ledger for ``awaiting_confirmation`` records
4) apply the resulting transition via compare-and-set
5) reschedule with backoff or retire the task, persisting its bookkeeping

The audit re-checks finalized records against the ledger without writing.
"""

from __future__ import annotations

from .audit import AuditFinding, AuditIssue, AuditReport, audit_records
from .backoff import BackoffPolicy
from .loop import ReconciliationLoop, TaskOutcome, TickReport
from .tasks import TaskQueue
from .transitions import (
    ALLOWED_TRANSITIONS,
    InvalidTransitionError,
    can_transition,
    ensure_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AuditFinding",
    "AuditIssue",
    "AuditReport",
    "BackoffPolicy",
    "InvalidTransitionError",
    "ReconciliationLoop",
    "TaskOutcome",
    "TaskQueue",
    "TickReport",
    "audit_records",
    "can_transition",
    "ensure_transition",
]
