"""Generation DTOs - wire shapes of POST /api/generate."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from specflow.domain.errors import ErrorCode, InvalidRequestError
from specflow.domain.ports.llm import CompletionOptions, GenerationRequest, GenerationResult


class GenerateUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerateResponse(BaseModel):
    """Successful generation body."""

    model_config = ConfigDict(populate_by_name=True)

    content: str
    model: str
    timestamp: str
    usage: GenerateUsage | None = None
    clamped: bool = False
    estimated_tokens: int = Field(0, serialization_alias="estimatedTokens")

    @classmethod
    def from_result(cls, result: GenerationResult) -> "GenerateResponse":
        return cls(
            content=result.content,
            model=result.model,
            timestamp=result.timestamp,
            usage=GenerateUsage(**result.usage.model_dump()) if result.usage else None,
            clamped=result.clamped,
            estimated_tokens=result.estimated_tokens,
        )


def _required_str(raw: dict, key: str) -> str | None:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        return None
    return value


def parse_generate_payload(raw: Any) -> GenerationRequest:
    """Validate a raw JSON body (camelCase keys) into a GenerationRequest.

    Raises:
        InvalidRequestError: MISSING_API_KEY, MISSING_MODEL, MISSING_PROMPTS,
            or INVALID_REQUEST for a non-object body or malformed options.

    """
    if not isinstance(raw, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    api_key = _required_str(raw, "apiKey")
    if api_key is None:
        raise InvalidRequestError(
            "OpenRouter API key is required and must be a string", ErrorCode.MISSING_API_KEY
        )
    model = _required_str(raw, "model")
    if model is None:
        raise InvalidRequestError(
            "Model selection is required and must be a string", ErrorCode.MISSING_MODEL
        )
    system_prompt = _required_str(raw, "systemPrompt")
    user_prompt = _required_str(raw, "userPrompt")
    if system_prompt is None or user_prompt is None:
        raise InvalidRequestError(
            "Both system and user prompts are required and must be strings",
            ErrorCode.MISSING_PROMPTS,
        )

    options_raw = raw.get("options") or {}
    if not isinstance(options_raw, dict):
        raise InvalidRequestError("options must be an object")
    try:
        options = CompletionOptions.model_validate(options_raw)
    except ValidationError as e:
        raise InvalidRequestError(f"Invalid options: {e.errors()[0]['msg']}") from e

    return GenerationRequest(
        api_key=api_key,
        model=model,
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        options=options,
    )
