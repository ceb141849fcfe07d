"""Models API - list usable models from the completion API (cached)."""

import logging
from datetime import datetime, timezone
from typing import Callable

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from specflow.api.dependencies import (
    client_ip,
    get_client_factory,
    get_models_cache,
    get_models_limiter,
)
from specflow.api.responses import (
    error_response,
    internal_error_response,
    rate_limit_headers,
    rate_limited_response,
)
from specflow.domain.errors import CompletionError, ErrorCode, InvalidRequestError
from specflow.domain.ports.llm import ModelInfo
from specflow.domain.services.model_catalog import (
    ModelsCache,
    is_usable_model,
    search_models,
    sort_models_for_display,
)
from specflow.infrastructure.llm.completion_client import CompletionClient
from specflow.infrastructure.resilience.rate_limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["models"])


@router.get("/models")
async def list_models(
    request: Request,
    api_key: str | None = Query(None, alias="apiKey"),
    q: str | None = Query(None, max_length=200),
    limiter: FixedWindowRateLimiter = Depends(get_models_limiter),
    cache: ModelsCache = Depends(get_models_cache),
    client_factory: Callable[[str], CompletionClient] = Depends(get_client_factory),
) -> JSONResponse:
    """Usable models, popular first. API key via ?apiKey= or the x-api-key header.

    q: optional search query; results are ordered by relevance.
    """
    decision = limiter.check(client_ip(request))
    if not decision.allowed:
        return rate_limited_response(decision, "Too many requests for models endpoint. Please try again later.")
    headers = {**rate_limit_headers(decision), "Cache-Control": "public, max-age=300"}

    key = api_key or request.headers.get("x-api-key")
    if not key:
        return error_response(
            InvalidRequestError("OpenRouter API key is required", ErrorCode.MISSING_API_KEY), headers
        )

    models = cache.get()
    cached = models is not None
    if models is None:
        try:
            async with client_factory(key) as client:
                raw = await client.list_models()
        except CompletionError as e:
            return error_response(e, headers)
        except Exception:
            logger.exception("Failed to fetch models")
            return internal_error_response("Failed to fetch models", headers)
        models = sort_models_for_display([m for m in raw if is_usable_model(m)])
        cache.set(models)

    if q:
        models = [r.model for r in search_models(models, q)]

    return JSONResponse(
        {
            "models": [_model_payload(m) for m in models],
            "cached": cached,
            "timestamp": datetime.fromtimestamp(cache.timestamp, timezone.utc).isoformat(),
            "count": len(models),
        },
        headers=headers,
    )


def _model_payload(model: ModelInfo) -> dict:
    return model.model_dump(mode="json", exclude_none=True)
