from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from uuid import UUID

import httpx
import pytest

from attestor.adapters.http_resilience import ResilienceConfig, ResilientClient
from attestor.adapters.ledger import (
    HttpConfirmationSource,
    LedgerAPIError,
    build_submission,
    content_hash,
)
from attestor.config import LedgerConfig, MissingConfigurationError, get_ledger_config
from attestor.domain.model import ConfirmationState
from attestor.domain.ports.confirmation import (
    RejectedConfirmationError,
    SubmissionPayload,
    TransientConfirmationError,
)
from tests.helpers.evidence import BASE_TIME, make_fingerprint

BASE_URL = "https://ledger.test/v1"


def _config() -> LedgerConfig:
    return LedgerConfig(
        api_key="secret-key",
        organization_id="org-1",
        tenant_id="tenant-1",
        resilience=ResilienceConfig(name="ledger", base_url=BASE_URL),
    )


def _payload() -> SubmissionPayload:
    return SubmissionPayload(
        fingerprint=make_fingerprint("a1"),
        registration_id=UUID(int=7),
        submitter_id="submitter-1",
        captured_at=BASE_TIME,
        title="Example article",
    )


def _make_source(
    handler: Callable[[httpx.Request], httpx.Response],
) -> HttpConfirmationSource:
    def factory(resilience: ResilienceConfig) -> ResilientClient:
        client = ResilientClient(resilience)
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))  # noqa: SLF001  # type: ignore[reportPrivateUsage]
        return client

    return HttpConfirmationSource(config=_config(), client_factory=factory)


def test_content_hash_is_order_independent() -> None:
    assert content_hash({"b": 1, "a": "x"}) == content_hash({"a": "x", "b": 1})
    assert len(content_hash({"a": 1})) == 64


def test_submit_posts_attestation_and_returns_reference() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=[{"hash": "ledger-hash-1", "accepted": True}])

    reference = asyncio.run(_make_source(handler).submit_fingerprint(_payload()))

    assert reference == "ledger-hash-1"
    request = captured[0]
    assert request.method == "POST"
    assert str(request.url) == f"{BASE_URL}/fingerprints"
    assert request.headers["Authorization"] == "Bearer secret-key"
    body = json.loads(request.content)
    assert isinstance(body, list)
    content = body[0]["attestation"]["content"]
    assert content["documentRef"] == make_fingerprint("a1")
    assert content["orgId"] == "org-1"
    assert content["eventId"] == str(UUID(int=7))
    assert body[0]["metadata"]["hash"] == content_hash(content)


def test_build_submission_is_deterministic() -> None:
    assert build_submission(_payload(), config=_config()) == build_submission(
        _payload(), config=_config()
    )


def test_submit_accepts_wrapped_response_shapes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"data": {"fingerprintHash": "wrapped"}})

    assert asyncio.run(_make_source(handler).submit_fingerprint(_payload())) == "wrapped"


def test_submit_without_reference_raises_ledger_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"accepted": True, "hash": "  "}])

    with pytest.raises(LedgerAPIError, match="without a reference"):
        asyncio.run(_make_source(handler).submit_fingerprint(_payload()))


@pytest.mark.parametrize("status_code", [400, 409, 422])
def test_submit_client_errors_are_rejections(status_code: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"error": "invalid"})

    with pytest.raises(RejectedConfirmationError):
        asyncio.run(_make_source(handler).submit_fingerprint(_payload()))


def test_submit_not_accepted_is_a_rejection() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"accepted": False, "errors": ["bad proof"]}])

    with pytest.raises(RejectedConfirmationError, match="bad proof"):
        asyncio.run(_make_source(handler).submit_fingerprint(_payload()))


@pytest.mark.parametrize("status_code", [429, 500, 503])
def test_server_errors_are_transient(status_code: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code)

    with pytest.raises(TransientConfirmationError):
        asyncio.run(_make_source(handler).submit_fingerprint(_payload()))


def test_unexpected_status_raises_ledger_api_error(caplog: pytest.LogCaptureFixture) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="unauthorized")

    with (
        caplog.at_level(logging.ERROR, logger="attestor.adapters.ledger.client"),
        pytest.raises(LedgerAPIError) as excinfo,
    ):
        asyncio.run(_make_source(handler).check_status("ref"))

    assert excinfo.value.status_code == 401
    assert isinstance(excinfo.value, TransientConfirmationError)
    logged = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert [record.msg for record in logged] == ["Ledger API error %s: %s"]
    assert logged[0].args == (401, "unauthorized")


def test_unparseable_payload_raises_ledger_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(LedgerAPIError):
        asyncio.run(_make_source(handler).check_status("ref"))


def test_network_errors_are_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientConfirmationError):
        asyncio.run(_make_source(handler).check_status("ref"))


@pytest.mark.parametrize(
    ("payload", "state", "confirmations"),
    [
        ({"data": {"status": "FINALIZED_COMMITMENT", "confirmationCount": 3}}, "final", 3),
        ({"data": {"status": "pending_commitment"}}, "pending", 0),
        ({"data": {"status": "REJECTED", "reason": "bad signature"}}, "rejected", 0),
        ({"data": {"status": "ERRORED"}}, "rejected", 0),
    ],
)
def test_check_status_maps_ledger_states(
    payload: dict[str, object], state: str, confirmations: int
) -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.path)
        return httpx.Response(200, json=payload)

    status = asyncio.run(_make_source(handler).check_status("ref-1"))

    assert requested == ["/v1/fingerprints/ref-1"]
    assert status.state is ConfirmationState(state)
    assert status.confirmations == confirmations


def test_check_status_not_found_is_pending() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    status = asyncio.run(_make_source(handler).check_status("ref-1"))

    assert status.state is ConfirmationState.PENDING


def test_find_reference_returns_matching_hash() -> None:
    fingerprint = make_fingerprint("a1")
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"data": [{"hash": "found-hash", "documentRef": fingerprint.upper()}]},
        )

    reference = asyncio.run(_make_source(handler).find_reference(fingerprint))

    assert reference == "found-hash"
    assert seen[0].url.params["document_ref"] == fingerprint


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"data": []}),
        httpx.Response(404),
        httpx.Response(200, json={"data": [{"hash": "x", "documentRef": "other"}]}),
        httpx.Response(200, json={"data": [{"hash": "unrelated"}]}),
    ],
)
def test_find_reference_returns_none_when_absent(response: httpx.Response) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    assert asyncio.run(_make_source(handler).find_reference(make_fingerprint("a1"))) is None


def test_http_source_raises_when_credentials_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LEDGER_API_KEY", "LEDGER_ORGANIZATION_ID", "LEDGER_TENANT_ID"):
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(MissingConfigurationError):
        HttpConfirmationSource()


def test_ledger_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEDGER_API_KEY", "k")
    monkeypatch.setenv("LEDGER_ORGANIZATION_ID", "o")
    monkeypatch.setenv("LEDGER_TENANT_ID", "t")
    monkeypatch.setenv("LEDGER_BASE_URL", "https://custom.test/api/")

    config = get_ledger_config()

    assert config.api_key == "k"
    assert config.base_url == "https://custom.test/api"


def test_concurrent_calls_share_one_client_until_closed() -> None:
    created: list[ResilientClient] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"status": "PENDING"}})

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        client = ResilientClient(resilience)
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))  # noqa: SLF001  # type: ignore[reportPrivateUsage]
        created.append(client)
        return client

    source = HttpConfirmationSource(config=_config(), client_factory=factory)

    async def scenario() -> None:
        await asyncio.gather(*(source.check_status(f"ref-{index}") for index in range(5)))
        await source.aclose()
        await source.check_status("ref-after-close")
        await source.aclose()

    asyncio.run(scenario())

    assert len(created) == 2
    assert created[0]._client.is_closed  # noqa: SLF001  # type: ignore[reportPrivateUsage]
    assert created[1]._client.is_closed  # noqa: SLF001  # type: ignore[reportPrivateUsage]
