"""Model catalog - cost, display ordering, search and a TTL cache of the model list.

Pricing in the model list is per token (decimal strings). Cost is computed
per token as well: usage.prompt_tokens * pricing.prompt.
"""

import time
from dataclasses import dataclass, field
from typing import Callable

from specflow.domain.entities.workflow_state import CostInfo
from specflow.domain.ports.llm import ModelInfo, ModelPricing, Usage

POPULAR_MODEL_IDS = (
    "openai/gpt-4o",
    "anthropic/claude-3.5-sonnet",
    "anthropic/claude-3-haiku",
    "google/gemini-pro",
    "mistralai/mistral-large",
    "openai/gpt-3.5-turbo",
)
_POPULAR_NAME_HINTS = ("gpt-4", "claude-3", "gemini")

PROVIDER_NAMES = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "mistralai": "Mistral AI",
    "meta-llama": "Meta",
    "microsoft": "Microsoft",
    "cohere": "Cohere",
    "huggingface": "Hugging Face",
    "together": "Together AI",
}


def _price(value: str | None) -> float:
    try:
        return float(value or 0)
    except ValueError:
        return 0.0


def compute_cost(usage: Usage | None, pricing: ModelPricing | None) -> CostInfo | None:
    """Derive USD cost from token usage and per-token pricing. None if either is missing."""
    if usage is None or pricing is None:
        return None
    prompt = usage.prompt_tokens * _price(pricing.prompt)
    completion = usage.completion_tokens * _price(pricing.completion)
    return CostInfo(prompt=prompt, completion=completion, total=prompt + completion)


def is_usable_model(model: ModelInfo) -> bool:
    """Model has id, name, a context window and both prices."""
    return bool(
        model.id
        and model.name
        and model.context_length > 0
        and model.pricing is not None
        and model.pricing.prompt
        and model.pricing.completion
    )


def is_popular_model(model: ModelInfo) -> bool:
    name = (model.name or "").lower()
    return any(pid in model.id for pid in POPULAR_MODEL_IDS) or any(h in name for h in _POPULAR_NAME_HINTS)


def sort_models_for_display(models: list[ModelInfo]) -> list[ModelInfo]:
    """Popular models first, then alphabetical by name."""
    return sorted(models, key=lambda m: (not is_popular_model(m), (m.name or "").lower()))


def model_provider(model: ModelInfo) -> str:
    """Display name of the provider prefix of the model id."""
    prefix = model.id.split("/")[0]
    return PROVIDER_NAMES.get(prefix, prefix)


def _modality(model: ModelInfo) -> str:
    return str((model.architecture or {}).get("modality") or "").lower()


def has_vision_support(model: ModelInfo) -> bool:
    """Whether the model accepts image input (architecture modality or name hints)."""
    modality = _modality(model)
    if any(k in modality for k in ("multimodal", "vision", "image")):
        return True
    haystack = f"{model.name} {model.id}".lower()
    return any(k in haystack for k in ("vision", "multimodal", "4o", "claude-3"))


def format_context_length(context_length: int) -> str:
    if context_length >= 1_000_000:
        return f"{context_length / 1_000_000:.1f}M tokens"
    if context_length >= 1000:
        return f"{round(context_length / 1000)}K tokens"
    return f"{context_length} tokens"


def format_pricing(model: ModelInfo) -> dict[str, str]:
    """Human-readable prompt/completion prices per 1K or 1M tokens."""
    if model.pricing is None:
        return {"prompt": "Unknown", "completion": "Unknown", "display": "Pricing unavailable"}
    prompt_m = _price(model.pricing.prompt) * 1_000_000
    completion_m = _price(model.pricing.completion) * 1_000_000
    if prompt_m == 0 and completion_m == 0:
        return {"prompt": "Free", "completion": "Free", "display": "Free"}
    if prompt_m < 1:
        # Sub-dollar per 1M: show per 1K with enough precision to be non-zero
        p, c = prompt_m / 1000, completion_m / 1000
        return {
            "prompt": f"${p:.4f}/1K",
            "completion": f"${c:.4f}/1K",
            "display": f"${p:.4f}/${c:.4f} per 1K",
        }
    return {
        "prompt": f"${prompt_m:.2f}/1M",
        "completion": f"${completion_m:.2f}/1M",
        "display": f"${prompt_m:.2f}/${completion_m:.2f} per 1M",
    }


@dataclass
class ModelSearchResult:
    model: ModelInfo
    score: int
    matched_fields: list[str] = field(default_factory=list)


def search_models(models: list[ModelInfo], query: str, max_results: int = 20) -> list[ModelSearchResult]:
    """Score models against query (id, name, description, provider, capabilities).

    Empty query returns the first max_results models with score 1.
    """
    q = query.strip().lower()
    if not q:
        return [ModelSearchResult(model=m, score=1) for m in models[:max_results]]

    results: list[ModelSearchResult] = []
    for model in models:
        matched: list[str] = []
        score = 0
        model_id = model.id.lower()
        name = (model.name or "").lower()

        if model_id == q:
            score += 100
            matched.append("id")
        if name == q:
            score += 90
            matched.append("name")
        if q in model_id:
            score += 20
            if "id" not in matched:
                matched.append("id")
        if q in name:
            score += 15
            if "name" not in matched:
                matched.append("name")
        if model.description and q in model.description.lower():
            score += 10
            matched.append("description")
        if q in model_provider(model).lower():
            score += 8
            matched.append("provider")
        tokenizer = str((model.architecture or {}).get("tokenizer") or "").lower()
        if q in _modality(model) or q in tokenizer:
            score += 5
            matched.append("architecture")
        if "vision" in q and has_vision_support(model):
            score += 15
            matched.append("vision")

        if score > 0:
            if is_popular_model(model):
                score += 5
            results.append(ModelSearchResult(model=model, score=score, matched_fields=matched))

    results.sort(key=lambda r: r.score, reverse=True)
    return results[:max_results]


class ModelsCache:
    """Processed model list with a time-to-live."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._models: list[ModelInfo] | None = None
        self._stored_at = 0.0
        self.timestamp: float = 0.0  # epoch seconds of the last fill

    def get(self) -> list[ModelInfo] | None:
        """Cached models, or None when empty or expired."""
        if self._models is None:
            return None
        if self._clock() - self._stored_at >= self._ttl:
            self._models = None
            return None
        return self._models

    def set(self, models: list[ModelInfo]) -> None:
        self._models = list(models)
        self._stored_at = self._clock()
        self.timestamp = time.time()

    def clear(self) -> None:
        self._models = None
