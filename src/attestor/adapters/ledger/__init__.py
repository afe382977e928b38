"""Public interface for the ledger adapter."""

from __future__ import annotations

from .client import HttpConfirmationSource, LedgerAPIError, build_submission, content_hash
from .schema import FingerprintStatusResponse, SubmissionResponse

__all__ = [
    "FingerprintStatusResponse",
    "HttpConfirmationSource",
    "LedgerAPIError",
    "SubmissionResponse",
    "build_submission",
    "content_hash",
]
