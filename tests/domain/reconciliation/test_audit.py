from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from attestor.domain.model import EvidenceStatus
from attestor.domain.ports.confirmation import TransientConfirmationError
from attestor.domain.reconciliation import AuditFinding, ReconciliationLoop, audit_records
from tests.helpers.confirmation import ScriptedConfirmationSource, final, pending, rejected
from tests.helpers.evidence import (
    FakeEvidenceRepository,
    make_fingerprint,
    make_record,
    make_unit_of_work_factory,
)

if TYPE_CHECKING:
    from attestor.domain.model import EvidenceRecord


def _finalized(seed: str, reference: str | None) -> EvidenceRecord:
    return make_record(
        make_fingerprint(seed),
        status=EvidenceStatus.FINALIZED,
        ledger_reference=reference,
        confirmation_count=1,
    )


def test_consistent_records_produce_no_issues() -> None:
    records = [_finalized("a1", "ref-a"), _finalized("b2", "ref-b")]
    source = ScriptedConfirmationSource(statuses=[final(4)])

    report = asyncio.run(audit_records(records, source=source, attempt_timeout_seconds=1.0))

    assert report.checked == 2
    assert report.consistent
    assert sorted(source.checked) == ["ref-a", "ref-b"]


def test_only_finalized_records_are_checked() -> None:
    records = [
        _finalized("a1", "ref-a"),
        make_record(
            make_fingerprint("b2"),
            status=EvidenceStatus.AWAITING_CONFIRMATION,
            ledger_reference="ref-b",
        ),
        make_record(make_fingerprint("c3"), status=EvidenceStatus.ERRORED),
    ]
    source = ScriptedConfirmationSource(statuses=[final()])

    report = asyncio.run(audit_records(records, source=source, attempt_timeout_seconds=1.0))

    assert report.checked == 1
    assert source.checked == ["ref-a"]


def test_ledger_disagreement_is_reported() -> None:
    records = [_finalized("a1", "ref-a")]

    for status in (pending(), rejected("revoked")):
        source = ScriptedConfirmationSource(statuses=[status])
        report = asyncio.run(audit_records(records, source=source, attempt_timeout_seconds=1.0))

        assert not report.consistent
        assert [issue.finding for issue in report.issues] == [AuditFinding.NOT_FINAL]
        assert "ref-a" in report.issues[0].detail


def test_missing_and_shared_references_are_reported() -> None:
    records = [
        _finalized("a1", None),
        _finalized("b2", "ref-same"),
        _finalized("c3", "ref-same"),
    ]
    source = ScriptedConfirmationSource(statuses=[final()])

    report = asyncio.run(audit_records(records, source=source, attempt_timeout_seconds=1.0))

    assert [(issue.fingerprint, issue.finding) for issue in report.issues] == [
        (make_fingerprint("a1"), AuditFinding.MISSING_REFERENCE),
        (make_fingerprint("b2"), AuditFinding.SHARED_REFERENCE),
        (make_fingerprint("c3"), AuditFinding.SHARED_REFERENCE),
    ]


def test_unreachable_ledger_is_reported_per_record() -> None:
    records = [_finalized("a1", "ref-a")]

    failing = ScriptedConfirmationSource(statuses=[TransientConfirmationError("503")])
    report = asyncio.run(audit_records(records, source=failing, attempt_timeout_seconds=1.0))
    assert [issue.finding for issue in report.issues] == [AuditFinding.UNREACHABLE]
    assert report.issues[0].detail == "503"

    hanging = ScriptedConfirmationSource(hang=True)
    report = asyncio.run(audit_records(records, source=hanging, attempt_timeout_seconds=0.05))
    assert [issue.finding for issue in report.issues] == [AuditFinding.UNREACHABLE]
    assert "Timed out" in report.issues[0].detail


def test_loop_audit_leaves_the_store_untouched() -> None:
    record = _finalized("a1", "ref-a")
    repository = FakeEvidenceRepository([record])
    source = ScriptedConfirmationSource(statuses=[pending()])
    loop = ReconciliationLoop(
        source=source, unit_of_work_factory=make_unit_of_work_factory(repository)
    )

    report = loop.audit_once()

    assert not report.consistent
    assert repository.get(make_fingerprint("a1")) == record
    assert repository.commit_count == 0
    assert source.close_count == 1
