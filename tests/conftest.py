"""Pytest configuration and shared fixtures."""

import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from specflow.api.container import Container, reset_container, set_container
from specflow.domain.ports.config import (
    AppConfig,
    OpenRouterConfig,
    PersistenceConfig,
    SecurityConfig,
)
from specflow.infrastructure.persistence.workflow_store import InMemoryStore
from specflow.main import app

UPSTREAM_URL = "https://openrouter.test/api/v1"

UPSTREAM_MODELS = [
    {
        "id": "meta-llama/llama-3-70b",
        "name": "Llama 3 70B",
        "description": "Open weights model",
        "context_length": 8192,
        "pricing": {"prompt": "0.0000008", "completion": "0.0000008"},
    },
    {
        "id": "anthropic/claude-3.5-sonnet",
        "name": "Claude 3.5 Sonnet",
        "context_length": 200000,
        "pricing": {"prompt": "0.000003", "completion": "0.000015"},
    },
    # Not usable: no pricing
    {"id": "acme/unpriced", "name": "Unpriced", "context_length": 4096},
]


class FakeUpstream:
    """Completion API stand-in for httpx.MockTransport. Records requests."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.contents: list[str] = []
        self.status = 200
        self.error_message = "upstream failure"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status >= 400:
            return httpx.Response(self.status, json={"error": {"message": self.error_message}})
        if request.url.path.endswith("/models"):
            return httpx.Response(200, json={"data": UPSTREAM_MODELS})
        body = json.loads(request.content)
        content = self.contents.pop(0) if self.contents else "# Generated"
        return httpx.Response(
            200,
            json={
                "id": "gen-1",
                "model": body["model"],
                "choices": [{"message": {"role": "assistant", "content": content}}],
                "usage": {"prompt_tokens": 120, "completion_tokens": 80, "total_tokens": 200},
            },
        )

    @property
    def completion_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/chat/completions")]


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        openrouter=OpenRouterConfig(base_url=UPSTREAM_URL, max_retries=0),
        persistence=PersistenceConfig(debounce_seconds=0),
        security=SecurityConfig(generate_requests_per_window=5, models_requests_per_window=3),
    )


@pytest.fixture
def container(app_config, upstream):
    """Container wired to the fake upstream and an in-memory store."""
    c = Container(config=app_config, store=InMemoryStore(), transport=httpx.MockTransport(upstream))
    set_container(c)
    yield c
    reset_container()


@pytest.fixture
async def client(container):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c
