"""HttpExecutor contract tests against an in-process httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from castor.config import Config
from castor.executor import (
    HttpExecutor,
    HttpFailure,
    Success,
    TransportFailure,
    UnparsableBody,
)
from castor.registry import ModelRegistry
from castor.request import translate_request
from tests.conftest import TEST_API_KEY
from tests.helpers import user_request

pytestmark = pytest.mark.contract


def _executor(handler) -> HttpExecutor:
    return HttpExecutor(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_attempt_posts_payload_with_bearer_auth(
    config: Config, registry: ModelRegistry
) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": []})

    payload = translate_request(user_request("hi"), config, registry)
    async with _executor(handler) as executor:
        outcome = await executor.attempt(payload, config)

    assert outcome == Success(status=200, body={"choices": []})
    assert len(seen) == 1
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://upstream.test/v1/chat/completions"
    assert request.headers["authorization"] == f"Bearer {TEST_API_KEY}"
    assert request.headers["content-type"] == "application/json"
    assert request.headers["user-agent"] == config.user_agent
    assert json.loads(request.content) == payload.body


@pytest.mark.asyncio
async def test_error_status_returns_http_failure_with_lowercased_headers(
    config: Config, registry: ModelRegistry
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429, headers={"Retry-After": "3"}, json={"error": {"message": "slow"}}
        )

    payload = translate_request(user_request(), config, registry)
    async with _executor(handler) as executor:
        outcome = await executor.attempt(payload, config)

    assert isinstance(outcome, HttpFailure)
    assert outcome.status == 429
    assert outcome.headers["retry-after"] == "3"
    assert "slow" in outcome.body


@pytest.mark.asyncio
async def test_non_json_success_body_is_unparsable(
    config: Config, registry: ModelRegistry
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    payload = translate_request(user_request(), config, registry)
    async with _executor(handler) as executor:
        outcome = await executor.attempt(payload, config)

    assert isinstance(outcome, UnparsableBody)
    assert outcome.status == 200


@pytest.mark.asyncio
async def test_json_array_success_body_is_unparsable(
    config: Config, registry: ModelRegistry
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[1, 2, 3])

    payload = translate_request(user_request(), config, registry)
    async with _executor(handler) as executor:
        outcome = await executor.attempt(payload, config)

    assert isinstance(outcome, UnparsableBody)
    assert "list" in outcome.reason


@pytest.mark.asyncio
async def test_connect_error_is_transport_failure(
    config: Config, registry: ModelRegistry
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("dns failure", request=request)

    payload = translate_request(user_request(), config, registry)
    async with _executor(handler) as executor:
        outcome = await executor.attempt(payload, config)

    assert isinstance(outcome, TransportFailure)
    assert outcome.timed_out is False


@pytest.mark.asyncio
async def test_timeout_is_flagged(config: Config, registry: ModelRegistry) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    payload = translate_request(user_request(), config, registry)
    async with _executor(handler) as executor:
        outcome = await executor.attempt(payload, config)

    assert isinstance(outcome, TransportFailure)
    assert outcome.timed_out is True


@pytest.mark.asyncio
async def test_exactly_one_request_per_attempt(
    config: Config, registry: ModelRegistry
) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503, text="down")

    payload = translate_request(user_request(), config, registry)
    async with _executor(handler) as executor:
        await executor.attempt(payload, config)

    assert calls == 1


@pytest.mark.asyncio
async def test_aclose_is_idempotent() -> None:
    executor = HttpExecutor()
    await executor.aclose()
    executor._get_client()
    await executor.aclose()
    await executor.aclose()
