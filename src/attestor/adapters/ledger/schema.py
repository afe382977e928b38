"""Pydantic models describing the ledger API payloads."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import cast

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FINAL_LEDGER_STATUSES = frozenset({"FINALIZED_COMMITMENT", "FINALIZED", "CONFIRMED"})
REJECTED_LEDGER_STATUSES = frozenset({"REJECTED", "ERRORED", "INVALID", "FAILED"})


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class LedgerBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SubmissionReceipt(LedgerBaseModel):
    hash: str | None = None
    fingerprint_hash: str | None = Field(default=None, alias="fingerprintHash")
    accepted: bool = True
    event_id: str | None = Field(default=None, alias="eventId")
    errors: list[str] = Field(default_factory=list)

    _normalize_hash = field_validator("hash", "fingerprint_hash", mode="before")(_blank_to_none)

    @property
    def reference(self) -> str | None:
        return self.hash or self.fingerprint_hash


class SubmissionResponse(LedgerBaseModel):
    """Submission responses come back as a list, a bare object or ``{"data": {...}}``."""

    receipts: list[SubmissionReceipt]

    @model_validator(mode="before")
    @classmethod
    def _normalize_envelope(cls, value: object) -> object:
        if isinstance(value, Sequence) and not isinstance(value, str | bytes):
            return {"receipts": list(cast(Sequence[object], value))}
        if isinstance(value, Mapping):
            mapping_value = cast(Mapping[str, object], value)
            if "receipts" in mapping_value:
                return mapping_value
            data = mapping_value.get("data")
            if isinstance(data, Mapping):
                return {"receipts": [data]}
            if isinstance(data, Sequence) and not isinstance(data, str | bytes):
                return {"receipts": list(cast(Sequence[object], data))}
            return {"receipts": [mapping_value]}
        return value


class FingerprintStatusData(LedgerBaseModel):
    status: str
    confirmations: int | None = Field(default=None, alias="confirmationCount")
    reason: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_LEDGER_STATUSES

    @property
    def is_rejected(self) -> bool:
        return self.status in REJECTED_LEDGER_STATUSES


class FingerprintStatusResponse(LedgerBaseModel):
    data: FingerprintStatusData


class FingerprintSummary(LedgerBaseModel):
    hash: str
    document_ref: str | None = Field(default=None, alias="documentRef")


class FingerprintSearchResponse(LedgerBaseModel):
    data: list[FingerprintSummary] = Field(default_factory=list)
