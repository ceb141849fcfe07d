"""Completion Port - request/response envelope and generation interfaces."""

from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field


class CompletionMessage(BaseModel):
    """Single message in a conversation."""

    role: str  # "system" | "user" | "assistant"
    content: str


class CompletionOptions(BaseModel):
    """Sampling options. Unset fields are omitted from the request body."""

    model_config = ConfigDict(extra="allow")

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    seed: int | None = None
    stop: str | list[str] | None = None


class CompletionRequest(BaseModel):
    """Body of POST /chat/completions."""

    model: str
    messages: list[CompletionMessage]
    options: CompletionOptions = Field(default_factory=CompletionOptions)
    stream: bool = False

    def to_body(self) -> dict[str, Any]:
        """Flatten into the wire body."""
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.model_dump() for m in self.messages],
        }
        body.update(self.options.model_dump(exclude_none=True))
        if self.stream:
            body["stream"] = True
        return body


class Usage(BaseModel):
    """Token usage of a completion."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChoiceMessage(BaseModel):
    role: str = "assistant"
    content: str | None = ""


class Choice(BaseModel):
    message: ChoiceMessage = Field(default_factory=ChoiceMessage)
    finish_reason: str | None = None


class CompletionResponse(BaseModel):
    """Parsed completion response."""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    model: str = ""
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage | None = None

    @property
    def content(self) -> str:
        """Text of the first choice."""
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


class ModelPricing(BaseModel):
    """Per-token prices as decimal strings (OpenRouter format)."""

    prompt: str = "0"
    completion: str = "0"


class ModelInfo(BaseModel):
    """Entry of GET /models."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    description: str | None = None
    context_length: int = 0
    pricing: ModelPricing | None = None
    architecture: dict[str, Any] | None = None
    top_provider: dict[str, Any] | None = None


class GenerationRequest(BaseModel):
    """One phase generation: prompts plus credentials and sampling options."""

    api_key: str
    model: str
    system_prompt: str
    user_prompt: str
    options: CompletionOptions = Field(default_factory=CompletionOptions)


class GenerationResult(BaseModel):
    """Outcome of a successful generation."""

    content: str
    model: str
    usage: Usage | None = None
    timestamp: str = ""
    clamped: bool = False
    estimated_tokens: int = 0


class GenerationPort(Protocol):
    """Interface used by the workflow engine to produce phase content."""

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Clamp prompts and run one completion."""
        ...
