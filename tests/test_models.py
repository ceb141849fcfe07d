"""Models API integration tests."""

import pytest


@pytest.mark.asyncio
async def test_models_requires_api_key(client, upstream):
    resp = await client.get("/api/models")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "MISSING_API_KEY"
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_models_returns_usable_sorted(client, upstream):
    resp = await client.get("/api/models", params={"apiKey": "sk-or-test"})

    assert resp.status_code == 200
    data = resp.json()
    assert [m["id"] for m in data["models"]] == [
        "anthropic/claude-3.5-sonnet",
        "meta-llama/llama-3-70b",
    ]
    assert data["count"] == 2
    assert data["cached"] is False
    assert data["timestamp"]
    assert resp.headers["Cache-Control"] == "public, max-age=300"
    assert upstream.requests[0].headers["authorization"] == "Bearer sk-or-test"


@pytest.mark.asyncio
async def test_models_cached(client, upstream):
    await client.get("/api/models", params={"apiKey": "sk-or-test"})
    resp = await client.get("/api/models", headers={"x-api-key": "sk-or-test"})

    assert resp.status_code == 200
    assert resp.json()["cached"] is True
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_models_search(client):
    resp = await client.get("/api/models", params={"apiKey": "sk-or-test", "q": "open weights"})

    assert resp.status_code == 200
    data = resp.json()
    assert [m["id"] for m in data["models"]] == ["meta-llama/llama-3-70b"]
    assert data["count"] == 1


@pytest.mark.asyncio
async def test_models_upstream_error(client, upstream):
    upstream.status = 401
    resp = await client.get("/api/models", params={"apiKey": "bad"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "INVALID_API_KEY"


@pytest.mark.asyncio
async def test_models_rate_limited(client):
    for _ in range(3):
        await client.get("/api/models", params={"apiKey": "sk-or-test"})
    resp = await client.get("/api/models", params={"apiKey": "sk-or-test"})
    assert resp.status_code == 429
    assert "Retry-After" in resp.headers
