"""HTTP client for the Digital Evidence ledger API."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

import httpx

from attestor.adapters.http_resilience import ResilienceConfig, ResilientClient
from attestor.config.ledger import LedgerConfig, get_ledger_config
from attestor.domain.model import ConfirmationState
from attestor.domain.ports.confirmation import (
    ConfirmationSource,
    ConfirmationStatus,
    RejectedConfirmationError,
    SubmissionPayload,
    TransientConfirmationError,
)

from .schema import FingerprintSearchResponse, FingerprintStatusResponse, SubmissionResponse

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic import BaseModel

    from attestor.domain.model import Fingerprint

log = getLogger(__name__)

FINGERPRINTS_PATH = "/fingerprints"
# statuses where the ledger never retries on our behalf
_REJECTING_STATUS_CODES = frozenset({400, 409, 422})


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


class LedgerAPIError(TransientConfirmationError):
    """The ledger answered with something we could not interpret."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def content_hash(content: dict[str, object]) -> str:
    """SHA-256 of the canonical (sorted keys, compact) JSON form of ``content``."""
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_submission(payload: SubmissionPayload, *, config: LedgerConfig) -> dict[str, object]:
    content: dict[str, object] = {
        "orgId": config.organization_id,
        "tenantId": config.tenant_id,
        "eventId": str(payload.registration_id),
        "signerId": payload.submitter_id,
        "documentId": payload.title,
        "documentRef": payload.fingerprint,
        "timestamp": payload.captured_at.isoformat(),
        "version": 1,
    }
    return {
        "attestation": {"content": content, "proofs": []},
        "metadata": {
            "hash": content_hash(content),
            "tags": {"source": "attestor", "registration": str(payload.registration_id)},
        },
    }


@dataclass(slots=True)
class HttpConfirmationSource:
    """:class:`ConfirmationSource` backed by the ledger's REST API.

    One client (and so one rate limiter and connection pool) is shared by all
    calls until :meth:`aclose`; the next call after closing opens a new one.
    """

    config: LedgerConfig = field(default_factory=get_ledger_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    async def submit_fingerprint(self, payload: SubmissionPayload) -> str:
        body = [build_submission(payload, config=self.config)]
        response = await self._send("POST", FINGERPRINTS_PATH, body=body)
        if response.status_code in _REJECTING_STATUS_CODES:
            raise RejectedConfirmationError(
                f"Ledger refused {payload.fingerprint} ({response.status_code}): "
                f"{_short_text(response)}"
            )
        self._raise_for_status(response)

        parsed = self._parse(SubmissionResponse, response)
        if not parsed.receipts:
            raise LedgerAPIError("Submission response carried no receipts")
        receipt = parsed.receipts[0]
        if not receipt.accepted:
            detail = "; ".join(receipt.errors) or "not accepted"
            raise RejectedConfirmationError(f"Ledger refused {payload.fingerprint}: {detail}")
        if receipt.reference is None:
            raise LedgerAPIError(f"Ledger accepted {payload.fingerprint} without a reference")
        return receipt.reference

    async def check_status(self, ledger_reference: str) -> ConfirmationStatus:
        response = await self._send("GET", f"{FINGERPRINTS_PATH}/{ledger_reference}")
        if response.status_code == httpx.codes.NOT_FOUND:
            # not yet indexed by the ledger
            return ConfirmationStatus(ConfirmationState.PENDING)
        self._raise_for_status(response)

        data = self._parse(FingerprintStatusResponse, response).data
        confirmations = max(data.confirmations or 0, 0)
        if data.is_final:
            return ConfirmationStatus(ConfirmationState.FINAL, confirmations)
        if data.is_rejected:
            return ConfirmationStatus(
                ConfirmationState.REJECTED, confirmations, detail=data.reason or data.status
            )
        return ConfirmationStatus(ConfirmationState.PENDING, confirmations, detail=data.status)

    async def find_reference(self, fingerprint: Fingerprint) -> str | None:
        response = await self._send(
            "GET", FINGERPRINTS_PATH, params={"document_ref": fingerprint, "limit": 1}
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        self._raise_for_status(response)

        for summary in self._parse(FingerprintSearchResponse, response).data:
            if summary.document_ref is not None and summary.document_ref.lower() == fingerprint:
                return summary.hash
        return None

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    def _session(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.config.resilience)
        return self._client

    async def _send(
        self,
        method: str,
        path: str,
        *,
        body: object = None,
        params: dict[str, str | int] | None = None,
    ) -> httpx.Response:
        url = f"{self.config.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        try:
            return await self._session().request(
                method, url, json=body, params=params, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise TransientConfirmationError(f"Ledger request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise TransientConfirmationError(f"Ledger request failed: {exc!r}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        code = response.status_code
        if code == httpx.codes.TOO_MANY_REQUESTS or code >= 500:
            raise TransientConfirmationError(f"Ledger unavailable ({code})")
        log.error("Ledger API error %s: %s", code, _short_text(response))
        raise LedgerAPIError(f"Unexpected ledger response ({code})", status_code=code)

    @staticmethod
    def _parse[TModel: BaseModel](model: type[TModel], response: httpx.Response) -> TModel:
        try:
            return model.model_validate(response.json())
        except ValueError as exc:
            raise LedgerAPIError(
                f"Unexpected ledger payload for {model.__name__}",
                status_code=response.status_code,
            ) from exc


def _short_text(response: httpx.Response, limit: int = 200) -> str:
    return response.text[:limit]


if TYPE_CHECKING:
    _source_check: ConfirmationSource = HttpConfirmationSource()
