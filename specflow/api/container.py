"""Dependency Injection Container - centralized service management."""

from functools import cached_property
from typing import TYPE_CHECKING

import httpx

from specflow.domain.ports.config import AppConfig
from specflow.domain.ports.store import KeyValueStore
from specflow.domain.services.model_catalog import ModelsCache
from specflow.infrastructure.config import load_config
from specflow.infrastructure.llm.completion_client import CompletionClient
from specflow.infrastructure.persistence.workflow_store import JsonFileStore, WorkflowStatePersister
from specflow.infrastructure.resilience.rate_limiter import FixedWindowRateLimiter

if TYPE_CHECKING:
    from specflow.application.generation.use_case import GenerationUseCase
    from specflow.application.workflow.engine import PhaseWorkflowEngine


class Container:
    """Dependency Injection Container with lazy initialization.

    All dependencies are created on first access and cached.

    Usage:
        container = Container()
        engine = container.workflow_engine

    Tests pass a config, an in-memory store and an httpx transport that
    stands in for the completion API.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        store: KeyValueStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config_override = config
        self._store_override = store
        self._transport = transport

    @cached_property
    def config(self) -> AppConfig:
        """Application configuration."""
        if self._config_override:
            return self._config_override
        return load_config()

    def create_client(self, api_key: str) -> CompletionClient:
        """Completion client for one caller's API key."""
        return CompletionClient(self.config.openrouter, api_key=api_key, transport=self._transport)

    @cached_property
    def store(self) -> KeyValueStore:
        """Durable key-value store for workflow state."""
        if self._store_override is not None:
            return self._store_override
        return JsonFileStore(self.config.persistence.data_dir)

    @cached_property
    def persister(self) -> WorkflowStatePersister:
        return WorkflowStatePersister(self.store, debounce_seconds=self.config.persistence.debounce_seconds)

    @cached_property
    def generation_use_case(self) -> "GenerationUseCase":
        """Server-side generation (clamp + completion)."""
        from specflow.application.generation.use_case import GenerationUseCase

        return GenerationUseCase(self.config, client_factory=self.create_client)

    @cached_property
    def workflow_engine(self) -> "PhaseWorkflowEngine":
        """The workflow engine, restored from the store."""
        from specflow.application.workflow.engine import PhaseWorkflowEngine

        return PhaseWorkflowEngine(
            generator=self.generation_use_case,
            config=self.config,
            persister=self.persister,
        )

    @cached_property
    def generate_rate_limiter(self) -> FixedWindowRateLimiter:
        sec = self.config.security
        return FixedWindowRateLimiter(
            max_requests=sec.generate_requests_per_window,
            window_seconds=sec.rate_limit_window_seconds,
            namespace="generate",
        )

    @cached_property
    def models_rate_limiter(self) -> FixedWindowRateLimiter:
        sec = self.config.security
        return FixedWindowRateLimiter(
            max_requests=sec.models_requests_per_window,
            window_seconds=sec.rate_limit_window_seconds,
            namespace="models",
        )

    @cached_property
    def models_cache(self) -> ModelsCache:
        return ModelsCache(ttl_seconds=self.config.models_cache_ttl_seconds)

    def shutdown(self) -> None:
        """Flush workflow state if the engine was created."""
        engine = self.__dict__.get("workflow_engine")
        if engine is not None:
            engine.close()

    def reset(self) -> None:
        """Reset all cached instances (useful for testing)."""
        for attr in list(self.__dict__.keys()):
            if not attr.startswith("_"):
                delattr(self, attr)


# Global container instance
_container: Container | None = None


def get_container() -> Container:
    """Get or create global container instance."""
    global _container
    if _container is None:
        _container = Container()
    return _container


def set_container(container: Container) -> None:
    """Install a prepared container (tests)."""
    global _container
    _container = container


def reset_container() -> None:
    """Reset global container (for testing)."""
    global _container
    if _container:
        _container.reset()
    _container = None
