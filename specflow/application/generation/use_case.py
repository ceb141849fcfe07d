"""Generation use case - clamp prompts to the server budget and run one completion."""

import logging
from datetime import datetime, timezone
from typing import Callable

from specflow.domain.errors import CompletionError, ErrorCode, InvalidRequestError, TokenBudgetError
from specflow.domain.ports.config import AppConfig
from specflow.domain.ports.llm import (
    CompletionMessage,
    CompletionRequest,
    GenerationRequest,
    GenerationResult,
)
from specflow.domain.services.token_budget import TokenBudgetEnforcer
from specflow.infrastructure.llm.completion_client import CompletionClient, CompletionStream

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], CompletionClient]


class GenerationUseCase:
    """Server-side generation: validate, clamp, call the completion API.

    Implements GenerationPort for the workflow engine and backs POST /api/generate.
    """

    def __init__(
        self,
        config: AppConfig,
        client_factory: ClientFactory | None = None,
        enforcer: TokenBudgetEnforcer | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or (
            lambda api_key: CompletionClient(config.openrouter, api_key=api_key)
        )
        self._enforcer = enforcer or TokenBudgetEnforcer(config.token_budget)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Clamp prompts to the conservative server context limit and generate."""
        if not request.api_key:
            raise InvalidRequestError("OpenRouter API key is required", ErrorCode.MISSING_API_KEY)
        if not request.model:
            raise InvalidRequestError("Model selection is required", ErrorCode.MISSING_MODEL)
        if not request.system_prompt or not request.user_prompt:
            raise InvalidRequestError("Both system and user prompts are required", ErrorCode.MISSING_PROMPTS)

        gen = self._config.generation
        max_output = request.options.max_tokens or gen.max_tokens
        try:
            clamped = self._enforcer.clamp(
                request.system_prompt,
                request.user_prompt,
                context_limit_tokens=gen.server_context_limit,
                max_output_tokens=max_output,
            )
        except TokenBudgetError as e:
            raise CompletionError(
                str(e), status=413, code=ErrorCode.CONTEXT_TOO_LONG.value, retryable=False
            ) from e
        if clamped.clamped:
            logger.info(
                "Prompts clamped for %s: ~%d input tokens", request.model, clamped.estimated_tokens
            )

        completion = CompletionRequest(
            model=request.model,
            messages=[
                CompletionMessage(role="system", content=clamped.system),
                CompletionMessage(role="user", content=clamped.user),
            ],
            options=request.options.model_copy(update={"max_tokens": max_output}),
        )
        async with self._client_factory(request.api_key) as client:
            response = await client.create_completion(completion)
            if isinstance(response, CompletionStream):
                content = "".join([chunk async for chunk in response])
                model, usage = request.model, None
            else:
                content, model, usage = response.content, response.model or request.model, response.usage

        return GenerationResult(
            content=content,
            model=model,
            usage=usage,
            timestamp=datetime.now(timezone.utc).isoformat(),
            clamped=clamped.clamped,
            estimated_tokens=clamped.estimated_tokens,
        )
