"""Tests for the completion API client (httpx MockTransport, no network)."""

import json

import httpx
import pytest

from specflow.domain.entities.workflow_state import ContextFile
from specflow.domain.errors import CompletionError, InvalidRequestError
from specflow.domain.ports.config import OpenRouterConfig
from specflow.domain.ports.llm import CompletionMessage, CompletionRequest
from specflow.infrastructure.llm.completion_client import (
    CompletionClient,
    embed_context_files,
    parse_retry_after,
    should_retry,
)

BASE_URL = "https://openrouter.test/api/v1"


def _completion_body(content: str = "Generated") -> dict:
    return {
        "id": "gen-1",
        "model": "test/model",
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


class Upstream:
    """Scripted upstream: returns queued responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        # Fresh response per call; a sent response is closed by the client
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)


@pytest.fixture
def sleeps() -> list[float]:
    return []


def _client(upstream: Upstream, sleeps: list[float], **config) -> CompletionClient:
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    cfg = OpenRouterConfig(base_url=BASE_URL, **config)
    return CompletionClient(cfg, api_key="sk-test", transport=httpx.MockTransport(upstream), sleep=fake_sleep)


class TestHelpers:
    def test_parse_retry_after_seconds(self):
        assert parse_retry_after("2") == 2.0
        assert parse_retry_after(" 1.5 ") == 1.5
        assert parse_retry_after(None) is None
        assert parse_retry_after("garbage") is None

    def test_parse_retry_after_rejects_non_finite(self):
        assert parse_retry_after("inf") is None
        assert parse_retry_after("-Infinity") is None
        assert parse_retry_after("nan") is None

    def test_parse_retry_after_past_date(self):
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0

    def test_should_retry(self):
        assert should_retry(CompletionError("x", status=0))
        assert should_retry(CompletionError("x", status=503))
        assert should_retry(CompletionError("x", status=429))
        assert not should_retry(CompletionError("x", status=400))
        assert not should_retry(CompletionError("x", status=408))
        assert not should_retry(InvalidRequestError("x"))
        assert not should_retry(ValueError("x"))

    def test_embed_context_files_skips_images(self):
        files = [
            ContextFile(id="1", name="notes.md", content="# Notes"),
            ContextFile(id="2", name="shot.png", mime_type="image/png", content="data:image/png;base64,AAAA"),
        ]
        prompt = embed_context_files("Do it", files)
        assert prompt == "Do it\n\n## Context Files\n\n### notes.md\n# Notes"

    def test_embed_context_files_skips_mime_typed_images(self):
        files = [ContextFile(id="1", name="diagram", type="image/png", content="\x89PNG-RAW-BYTES")]
        assert embed_context_files("Do it", files) == "Do it"

    def test_embed_no_files(self):
        assert embed_context_files("Do it", []) == "Do it"


class TestCompletionClient:
    def test_missing_api_key(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            CompletionClient(OpenRouterConfig(api_key=""), api_key="  ")
        assert exc_info.value.code == "MISSING_API_KEY"

    @pytest.mark.asyncio
    async def test_generate_completion_success(self, sleeps):
        upstream = Upstream(httpx.Response(200, json=_completion_body("Hello")))
        async with _client(upstream, sleeps) as client:
            content = await client.generate_completion("test/model", "system", "user")

        assert content == "Hello"
        request = upstream.requests[0]
        assert request.url == f"{BASE_URL}/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        assert request.headers["x-title"] == "SpecFlow"
        assert request.headers["http-referer"] == "http://localhost:8000"
        body = json.loads(request.content)
        assert body["model"] == "test/model"
        assert body["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]
        assert "temperature" not in body
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_server_error_retried_with_backoff(self, sleeps):
        upstream = Upstream(httpx.Response(503, json={"error": {"message": "overloaded"}}))
        client = _client(upstream, sleeps, max_retries=3)

        with pytest.raises(CompletionError) as exc_info:
            await client.generate_completion("test/model", "s", "u")

        assert len(upstream.requests) == 4
        assert sleeps == [2.0, 4.0, 8.0]
        assert exc_info.value.status == 503
        assert exc_info.value.message == "overloaded"
        assert exc_info.value.retryable is True
        await client.close()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, sleeps):
        upstream = Upstream(
            httpx.Response(502),
            httpx.Response(200, json=_completion_body("ok")),
        )
        client = _client(upstream, sleeps)
        assert await client.generate_completion("test/model", "s", "u") == "ok"
        assert len(upstream.requests) == 2
        assert sleeps == [2.0]
        await client.close()

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, sleeps):
        upstream = Upstream(
            httpx.Response(429, headers={"Retry-After": "2"}, json={"error": {"message": "slow down"}}),
            httpx.Response(200, json=_completion_body()),
        )
        client = _client(upstream, sleeps, backoff_base_seconds=0.01)
        await client.generate_completion("test/model", "s", "u")
        assert len(sleeps) == 1
        assert sleeps[0] >= 2.0
        await client.close()

    @pytest.mark.asyncio
    async def test_infinite_retry_after_uses_backoff(self, sleeps):
        upstream = Upstream(
            httpx.Response(429, headers={"Retry-After": "inf"}, json={"error": {"message": "slow down"}}),
            httpx.Response(200, json=_completion_body()),
        )
        client = _client(upstream, sleeps, backoff_base_seconds=0.01)
        await client.generate_completion("test/model", "s", "u")
        assert sleeps == [pytest.approx(0.02)]
        await client.close()

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, sleeps):
        upstream = Upstream(httpx.Response(400, json={"error": {"message": "bad body", "code": 400}}))
        client = _client(upstream, sleeps)
        with pytest.raises(CompletionError) as exc_info:
            await client.generate_completion("test/model", "s", "u")
        assert len(upstream.requests) == 1
        assert sleeps == []
        assert exc_info.value.code == "HTTP_400"
        assert exc_info.value.upstream_code == 400
        await client.close()

    @pytest.mark.asyncio
    async def test_invalid_key_maps_code(self, sleeps):
        upstream = Upstream(httpx.Response(401, text="nope"))
        client = _client(upstream, sleeps)
        with pytest.raises(CompletionError) as exc_info:
            await client.list_models()
        assert exc_info.value.code == "INVALID_API_KEY"
        assert exc_info.value.message.startswith("HTTP 401")
        await client.close()

    @pytest.mark.asyncio
    async def test_json_parse_error_propagates(self, sleeps):
        upstream = Upstream(
            httpx.Response(200, content=b"not json", headers={"content-type": "application/json"})
        )
        client = _client(upstream, sleeps)
        with pytest.raises(json.JSONDecodeError):
            await client.generate_completion("test/model", "s", "u")
        assert len(upstream.requests) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_network_error_is_status_zero(self, sleeps):
        upstream = Upstream(httpx.ConnectError("connection refused"))
        client = _client(upstream, sleeps, max_retries=1)
        with pytest.raises(CompletionError) as exc_info:
            await client.generate_completion("test/model", "s", "u")
        assert exc_info.value.status == 0
        assert exc_info.value.code == "NETWORK_ERROR"
        assert len(upstream.requests) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_streaming_response(self, sleeps):
        stream_body = (
            b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
            b": keep-alive\n\n"
            b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
            b"data: [DONE]\n\n"
        )
        upstream = Upstream(
            httpx.Response(200, content=stream_body, headers={"content-type": "text/event-stream"})
        )
        client = _client(upstream, sleeps)
        request = CompletionRequest(
            model="test/model",
            messages=[CompletionMessage(role="user", content="hi")],
            stream=True,
        )
        stream = await client.create_completion(request)
        chunks = [chunk async for chunk in stream]
        assert chunks == ["Hel", "lo"]
        assert json.loads(upstream.requests[0].content)["stream"] is True
        await client.close()

    @pytest.mark.asyncio
    async def test_validation_before_network(self, sleeps):
        upstream = Upstream(httpx.Response(200, json=_completion_body()))
        client = _client(upstream, sleeps)
        with pytest.raises(InvalidRequestError) as exc_info:
            await client.generate_completion("", "s", "u")
        assert exc_info.value.code == "MISSING_MODEL"
        with pytest.raises(InvalidRequestError) as exc_info:
            await client.generate_completion("test/model", "", "u")
        assert exc_info.value.code == "MISSING_PROMPTS"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_list_models(self, sleeps):
        upstream = Upstream(
            httpx.Response(200, json={"data": [{"id": "a/b", "name": "B", "context_length": 4096}]})
        )
        client = _client(upstream, sleeps)
        models = await client.list_models()
        assert [m.id for m in models] == ["a/b"]
        assert upstream.requests[0].method == "GET"
        assert "x-title" not in upstream.requests[0].headers
        await client.close()

    @pytest.mark.asyncio
    async def test_list_models_missing_data(self, sleeps):
        upstream = Upstream(httpx.Response(200, json={"models": []}))
        client = _client(upstream, sleeps)
        with pytest.raises(CompletionError) as exc_info:
            await client.list_models()
        assert exc_info.value.message == "Invalid response: missing data"
        assert exc_info.value.retryable is False
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_never_raises(self, sleeps):
        upstream = Upstream(httpx.Response(401))
        client = _client(upstream, sleeps)
        assert await client.test_connection() is False
        await client.close()
