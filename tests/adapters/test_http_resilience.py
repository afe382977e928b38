from __future__ import annotations

import asyncio

import httpx
from httpx_retries import RetryTransport

from attestor.adapters.http_resilience import (
    RateLimit,
    ResilienceConfig,
    ResilientClient,
    RetryPolicy,
    build_retry,
)

FAST_RETRY = RetryPolicy(total=2, backoff_factor=0.001, max_backoff_wait=0.01, backoff_jitter=0.0)


def _client_with(
    transport: httpx.MockTransport, *, ratelimit: RateLimit | None = None
) -> ResilientClient:
    config = ResilienceConfig(name="test", retry=FAST_RETRY, ratelimit=ratelimit)
    client = ResilientClient(config)
    client._client = httpx.AsyncClient(  # noqa: SLF001  # type: ignore[reportPrivateUsage]
        transport=RetryTransport(transport=transport, retry=build_retry(FAST_RETRY))
    )
    return client


def test_build_retry_excludes_post() -> None:
    retry = build_retry(RetryPolicy())

    assert "GET" in retry.allowed_methods
    assert "POST" not in retry.allowed_methods


def test_get_is_retried_on_server_errors() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"ok": True})

    async def run() -> httpx.Response:
        async with _client_with(httpx.MockTransport(handler)) as client:
            return await client.request("GET", "https://ledger.test/fingerprints/abc")

    response = asyncio.run(run())

    assert response.status_code == 200
    assert calls == ["GET", "GET", "GET"]


def test_post_is_sent_once() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        return httpx.Response(503)

    async def run() -> httpx.Response:
        async with _client_with(httpx.MockTransport(handler)) as client:
            return await client.request("POST", "https://ledger.test/fingerprints", json=[{}])

    response = asyncio.run(run())

    assert response.status_code == 503
    assert calls == ["POST"]


def test_rate_limited_client_still_serves_requests() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    async def run() -> list[int]:
        async with _client_with(
            httpx.MockTransport(handler), ratelimit=RateLimit(max_calls=5, per_seconds=1.0)
        ) as client:
            responses = await asyncio.gather(
                *(client.request("GET", "https://ledger.test/ping") for _ in range(3))
            )
        return [response.status_code for response in responses]

    assert asyncio.run(run()) == [200, 200, 200]


def test_client_retries_transport_failures_without_response_hooks() -> None:
    client = ResilientClient(ResilienceConfig(name="plain"))

    assert RetryPolicy().retry_on_exceptions == (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )
    assert client._client.event_hooks == {"request": [], "response": []}  # noqa: SLF001  # type: ignore[reportPrivateUsage]
    asyncio.run(client.aclose())
