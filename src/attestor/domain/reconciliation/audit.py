"""Read-only consistency audit of finalized records against the ledger.

Finalized is terminal, so the audit never rewrites a record; it reports drift
for an operator to act on.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from attestor.domain.model import ConfirmationState, EvidenceStatus
from attestor.domain.ports.confirmation import ConfirmationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from attestor.domain.model import EvidenceRecord, Fingerprint
    from attestor.domain.ports.confirmation import ConfirmationSource

log = getLogger(__name__)


class AuditFinding(StrEnum):
    MISSING_REFERENCE = "missing_reference"
    NOT_FINAL = "not_final_on_ledger"
    SHARED_REFERENCE = "shared_reference"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True, slots=True)
class AuditIssue:
    fingerprint: Fingerprint
    finding: AuditFinding
    detail: str


@dataclass(frozen=True, slots=True)
class AuditReport:
    checked: int
    issues: tuple[AuditIssue, ...] = ()

    @property
    def consistent(self) -> bool:
        return not self.issues


async def audit_records(
    records: Iterable[EvidenceRecord],
    *,
    source: ConfirmationSource,
    attempt_timeout_seconds: float,
) -> AuditReport:
    """Re-check every finalized record in ``records``.

    A finalized record must carry a ledger reference of its own, and the
    ledger must still report that reference as final.
    """

    finalized = [record for record in records if record.status is EvidenceStatus.FINALIZED]
    issues: list[AuditIssue] = []

    by_reference: defaultdict[str, list[Fingerprint]] = defaultdict(list)
    anchored: list[tuple[EvidenceRecord, str]] = []
    for record in finalized:
        if record.ledger_reference is None:
            issues.append(
                AuditIssue(
                    record.fingerprint,
                    AuditFinding.MISSING_REFERENCE,
                    "Finalized without a ledger reference",
                )
            )
            continue
        by_reference[record.ledger_reference].append(record.fingerprint)
        anchored.append((record, record.ledger_reference))

    for reference, fingerprints in by_reference.items():
        if len(fingerprints) > 1:
            issues.extend(
                AuditIssue(
                    fingerprint,
                    AuditFinding.SHARED_REFERENCE,
                    f"Reference {reference} is shared by {len(fingerprints)} records",
                )
                for fingerprint in fingerprints
            )

    results = await asyncio.gather(
        *(
            _recheck(record, reference, source, attempt_timeout_seconds)
            for record, reference in anchored
        )
    )
    issues.extend(issue for issue in results if issue is not None)

    issues.sort(key=lambda issue: (issue.fingerprint, issue.finding))
    return AuditReport(checked=len(finalized), issues=tuple(issues))


async def _recheck(
    record: EvidenceRecord, reference: str, source: ConfirmationSource, timeout: float
) -> AuditIssue | None:
    try:
        async with asyncio.timeout(timeout):
            status = await source.check_status(reference)
    except TimeoutError:
        return AuditIssue(
            record.fingerprint, AuditFinding.UNREACHABLE, f"Timed out after {timeout}s"
        )
    except ConfirmationError as exc:
        log.warning("Could not re-check %s: %s", record.fingerprint, exc)
        return AuditIssue(
            record.fingerprint, AuditFinding.UNREACHABLE, str(exc) or type(exc).__name__
        )
    if status.state is not ConfirmationState.FINAL:
        return AuditIssue(
            record.fingerprint,
            AuditFinding.NOT_FINAL,
            f"Ledger reports {status.state.value} for {reference}",
        )
    return None
