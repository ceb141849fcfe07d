"""Shared JSON responses: error envelope and rate-limit headers."""

import math

from fastapi.responses import JSONResponse

from specflow.domain.errors import CompletionError, ErrorCode
from specflow.infrastructure.resilience.rate_limiter import RateLimitDecision


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(math.ceil(decision.retry_after))
    return headers


def rate_limited_response(decision: RateLimitDecision, message: str) -> JSONResponse:
    return JSONResponse(
        {
            "error": {
                "code": ErrorCode.RATE_LIMITED.value,
                "message": message,
                "retryable": True,
                "retryAfter": math.ceil(decision.retry_after),
            }
        },
        status_code=429,
        headers=rate_limit_headers(decision),
    )


def error_response(exc: CompletionError, headers: dict[str, str] | None = None) -> JSONResponse:
    """Error envelope with the status mapped from the error code."""
    return JSONResponse(exc.to_payload(), status_code=exc.http_status, headers=headers)


def internal_error_response(message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        {"error": {"code": ErrorCode.INTERNAL_ERROR.value, "message": message, "retryable": True}},
        status_code=500,
        headers=headers,
    )
