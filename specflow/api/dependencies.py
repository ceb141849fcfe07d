"""FastAPI dependencies - resolved from the DI container."""

from typing import Callable

from fastapi import Request
from slowapi.util import get_remote_address

from specflow.api.container import get_container
from specflow.application.generation.use_case import GenerationUseCase
from specflow.application.workflow.engine import PhaseWorkflowEngine
from specflow.domain.ports.config import AppConfig
from specflow.domain.services.model_catalog import ModelsCache
from specflow.infrastructure.llm.completion_client import CompletionClient
from specflow.infrastructure.resilience.rate_limiter import FixedWindowRateLimiter


def get_config() -> AppConfig:
    return get_container().config


def get_generation_use_case() -> GenerationUseCase:
    return get_container().generation_use_case


def get_workflow_engine() -> PhaseWorkflowEngine:
    return get_container().workflow_engine


def get_generate_limiter() -> FixedWindowRateLimiter:
    return get_container().generate_rate_limiter


def get_models_limiter() -> FixedWindowRateLimiter:
    return get_container().models_rate_limiter


def get_models_cache() -> ModelsCache:
    return get_container().models_cache


def client_ip(request: Request) -> str:
    """Client key for rate limiting: X-Forwarded-For, X-Real-IP, then the socket peer."""
    if forwarded := request.headers.get("x-forwarded-for"):
        return forwarded.split(",")[0].strip()
    if real_ip := request.headers.get("x-real-ip"):
        return real_ip.strip()
    return get_remote_address(request)


def get_client_factory() -> Callable[[str], CompletionClient]:
    """Factory of completion clients keyed by the caller's API key."""
    return get_container().create_client
