"""Generate API - one clamped completion per request."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from specflow.api.dependencies import client_ip, get_generate_limiter, get_generation_use_case
from specflow.api.responses import (
    error_response,
    internal_error_response,
    rate_limit_headers,
    rate_limited_response,
)
from specflow.application.generation import GenerateResponse, GenerationUseCase, parse_generate_payload
from specflow.domain.errors import CompletionError, InvalidRequestError
from specflow.infrastructure.resilience.rate_limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generate"])


@router.post("/generate")
async def generate(
    request: Request,
    use_case: GenerationUseCase = Depends(get_generation_use_case),
    limiter: FixedWindowRateLimiter = Depends(get_generate_limiter),
) -> JSONResponse:
    """Generate content from system + user prompts with the caller's API key.

    Body: {apiKey, model, systemPrompt, userPrompt, options?}. Errors use the
    {error: {code, message, retryable}} envelope.
    """
    decision = limiter.check(client_ip(request))
    if not decision.allowed:
        return rate_limited_response(decision, "Too many requests. Please try again later.")
    headers = rate_limit_headers(decision)

    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return error_response(InvalidRequestError("Invalid JSON in request body"), headers)

    try:
        generation_request = parse_generate_payload(raw)
        result = await use_case.generate(generation_request)
    except CompletionError as e:
        return error_response(e, headers)
    except Exception:
        logger.exception("Generation failed")
        return internal_error_response("An internal server error occurred", headers)

    body = GenerateResponse.from_result(result).model_dump(mode="json", by_alias=True)
    return JSONResponse(body, headers=headers)
