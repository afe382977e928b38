"""SQLAlchemy table metadata for evidence records and their reconciliation tasks.

Records are frozen values, so they are stored through Core tables and
converted explicitly instead of being mapped imperatively.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Dialect,
    Enum,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    Uuid,
)

from attestor.domain.model import EvidenceRecord, EvidenceStatus, ReconciliationTask
from attestor.domain.registry import FINGERPRINT_LENGTH, MAX_ORIGIN_URL_LENGTH, MAX_TITLE_LENGTH

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

evidence_record_table = Table(
    "evidence_record",
    metadata,
    Column("fingerprint", String(FINGERPRINT_LENGTH), primary_key=True),
    Column("registration_id", UUIDColumnType, nullable=False, unique=True),
    Column("submitter_id", String, nullable=False, index=True),
    Column("captured_at", UTCDateTime(), nullable=False),
    Column("origin_url", String(MAX_ORIGIN_URL_LENGTH), nullable=False),
    Column("title", String(MAX_TITLE_LENGTH), nullable=False),
    Column(
        "status",
        Enum(
            EvidenceStatus,
            native_enum=False,
            length=32,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        index=True,
    ),
    Column("ledger_reference", String, nullable=True),
    Column("confirmation_count", Integer, nullable=False, default=0),
    Column("error_info", Text, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    CheckConstraint("confirmation_count >= 0", name="confirmation_count_non_negative"),
)

reconciliation_task_table = Table(
    "reconciliation_task",
    metadata,
    Column(
        "fingerprint",
        String(FINGERPRINT_LENGTH),
        ForeignKey("evidence_record.fingerprint"),
        primary_key=True,
    ),
    Column("attempt_count", Integer, nullable=False, default=0),
    Column("poll_count", Integer, nullable=False, default=0),
    Column("next_attempt_at", UTCDateTime(), nullable=False, index=True),
    Column("last_error", Text, nullable=True),
    CheckConstraint("attempt_count >= 0", name="attempt_count_non_negative"),
)


def record_to_row(record: EvidenceRecord) -> dict[str, object]:
    return {
        "fingerprint": record.fingerprint,
        "registration_id": record.registration_id,
        "submitter_id": record.submitter_id,
        "captured_at": record.captured_at,
        "origin_url": record.origin_url,
        "title": record.title,
        "status": record.status,
        "ledger_reference": record.ledger_reference,
        "confirmation_count": record.confirmation_count,
        "error_info": record.error_info,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def row_to_record(row: Mapping[str, object]) -> EvidenceRecord:
    return EvidenceRecord(
        fingerprint=row["fingerprint"],  # type: ignore[arg-type]
        registration_id=row["registration_id"],  # type: ignore[arg-type]
        submitter_id=row["submitter_id"],  # type: ignore[arg-type]
        captured_at=row["captured_at"],  # type: ignore[arg-type]
        origin_url=row["origin_url"],  # type: ignore[arg-type]
        title=row["title"],  # type: ignore[arg-type]
        status=EvidenceStatus(row["status"]),
        ledger_reference=row["ledger_reference"],  # type: ignore[arg-type]
        confirmation_count=row["confirmation_count"],  # type: ignore[arg-type]
        error_info=row["error_info"],  # type: ignore[arg-type]
        created_at=row["created_at"],  # type: ignore[arg-type]
        updated_at=row["updated_at"],  # type: ignore[arg-type]
    )


def task_to_row(task: ReconciliationTask) -> dict[str, object]:
    return {
        "fingerprint": task.fingerprint,
        "attempt_count": task.attempt_count,
        "poll_count": task.poll_count,
        "next_attempt_at": task.next_attempt_at,
        "last_error": task.last_error,
    }


def row_to_task(row: Mapping[str, object]) -> ReconciliationTask:
    return ReconciliationTask(
        fingerprint=row["fingerprint"],  # type: ignore[arg-type]
        attempt_count=row["attempt_count"],  # type: ignore[arg-type]
        poll_count=row["poll_count"],  # type: ignore[arg-type]
        next_attempt_at=row["next_attempt_at"],  # type: ignore[arg-type]
        last_error=row["last_error"],  # type: ignore[arg-type]
    )


def create_all_tables(engine: Engine) -> None:
    """Create database tables for evidence records and reconciliation tasks."""

    log.info("Creating all tables")
    metadata.create_all(engine)
