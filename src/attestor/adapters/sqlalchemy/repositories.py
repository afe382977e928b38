"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, insert, select, update

from attestor.adapters.sqlalchemy.mappings import (
    evidence_record_table,
    reconciliation_task_table,
    record_to_row,
    row_to_record,
    row_to_task,
    task_to_row,
)

if TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.orm import Session

    from attestor.domain.model import (
        EvidenceRecord,
        EvidenceStatus,
        Fingerprint,
        ReconciliationTask,
    )


_ORDERING = (evidence_record_table.c.captured_at, evidence_record_table.c.fingerprint)


class SqlAlchemyEvidenceRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: EvidenceRecord) -> None:
        self.session.execute(insert(evidence_record_table).values(**record_to_row(entity)))

    def get(self, fingerprint: Fingerprint) -> EvidenceRecord | None:
        stmt = select(evidence_record_table).where(
            evidence_record_table.c.fingerprint == fingerprint
        )
        row = self.session.execute(stmt).mappings().one_or_none()
        return row_to_record(row) if row is not None else None

    def compare_and_set_status(
        self,
        fingerprint: Fingerprint,
        expected: EvidenceStatus,
        record: EvidenceRecord,
    ) -> bool:
        values = record_to_row(record)
        # identity columns never change after registration
        for key in ("fingerprint", "registration_id", "created_at"):
            values.pop(key)
        stmt = (
            update(evidence_record_table)
            .where(evidence_record_table.c.fingerprint == fingerprint)
            .where(evidence_record_table.c.status == expected)
            .values(**values)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1  # pyright: ignore[reportAttributeAccessIssue]

    def list_by_status(self, *statuses: EvidenceStatus) -> list[EvidenceRecord]:
        if not statuses:
            return []
        stmt = select(evidence_record_table).where(evidence_record_table.c.status.in_(statuses))
        return self._fetch(stmt)

    def list_by_submitter(self, submitter_id: str) -> list[EvidenceRecord]:
        stmt = select(evidence_record_table).where(
            evidence_record_table.c.submitter_id == submitter_id
        )
        return self._fetch(stmt)

    def all(self) -> list[EvidenceRecord]:
        return self._fetch(select(evidence_record_table))

    def _fetch(self, stmt: Select[tuple[object, ...]]) -> list[EvidenceRecord]:
        rows = self.session.execute(stmt.order_by(*_ORDERING)).mappings().all()
        return [row_to_record(row) for row in rows]


class SqlAlchemyReconciliationTaskRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, fingerprint: Fingerprint) -> ReconciliationTask | None:
        stmt = select(reconciliation_task_table).where(
            reconciliation_task_table.c.fingerprint == fingerprint
        )
        row = self.session.execute(stmt).mappings().one_or_none()
        return row_to_task(row) if row is not None else None

    def save(self, task: ReconciliationTask) -> None:
        values = task_to_row(task)
        stmt = (
            update(reconciliation_task_table)
            .where(reconciliation_task_table.c.fingerprint == task.fingerprint)
            .values(**values)
        )
        result = self.session.execute(stmt)
        if result.rowcount == 0:  # pyright: ignore[reportAttributeAccessIssue]
            self.session.execute(insert(reconciliation_task_table).values(**values))

    def delete(self, fingerprint: Fingerprint) -> None:
        self.session.execute(
            delete(reconciliation_task_table).where(
                reconciliation_task_table.c.fingerprint == fingerprint
            )
        )

    def all(self) -> list[ReconciliationTask]:
        stmt = select(reconciliation_task_table).order_by(
            reconciliation_task_table.c.next_attempt_at,
            reconciliation_task_table.c.fingerprint,
        )
        return [row_to_task(row) for row in self.session.execute(stmt).mappings().all()]
