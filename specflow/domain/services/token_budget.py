"""Token budget - heuristic estimation, fail-fast validation and middle-out clamping.

Token counts are estimated from character counts with a fixed ratio
(about 3.7 characters per token for English prose). This is a heuristic,
not the model's tokenizer: it is calibrated to over-estimate slightly so a
clamped request stays inside the real context window.

Clamping runs in three steps:
1. Binary-looking content (data URLs, long base64 runs, control-character
   blobs) is replaced with short placeholders.
2. If system + user still exceed the input budget, the system prompt is
   held to a fixed share of it (head kept, note appended).
3. The user prompt gets the rest through middle-out truncation: the head
   (feature framing) and the tail (closing instructions) survive, the
   middle is replaced by a marker.

Clamping is idempotent: a clamped pair fits its budget, so clamping it
again with the same limits returns it unchanged.
"""

import math
import re
from dataclasses import dataclass

from specflow.domain.errors import TokenBudgetError
from specflow.domain.ports.config import TokenBudgetConfig

TRUNCATION_MARKER = "\n\n[... content omitted for length ...]\n\n"
SYSTEM_TRUNCATION_NOTE = "\n\n[System prompt truncated to fit token limits]"

_DATA_URL_RE = re.compile(r"data:[a-zA-Z0-9/+;=,.-]+base64,[A-Za-z0-9+/=]+")
_BASE64_RUN_RE = re.compile(r"[A-Za-z0-9+/]{200,}={0,2}")
_CONTROL_RUN_RE = re.compile(r"\x00[\x00-\x1F]{10,}")


def estimate_tokens(text: str, chars_per_token: float = 3.7) -> int:
    """Estimate tokens as ceil(len / chars_per_token). Conservative, not exact."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def strip_binary_content(text: str) -> str:
    """Replace data URLs and base64/binary-looking runs with placeholders."""
    text = _DATA_URL_RE.sub("[BINARY_DATA_REMOVED]", text)
    text = _BASE64_RUN_RE.sub("[BINARY_SEQUENCE_REMOVED]", text)
    return _CONTROL_RUN_RE.sub("[BINARY_CONTENT_REMOVED]", text)


def truncate_middle(
    text: str,
    max_chars: int,
    head_ratio: float = 0.6,
    tail_ratio: float = 0.35,
    marker: str = TRUNCATION_MARKER,
) -> str:
    """Cut text to at most max_chars, keeping head and tail around a marker.

    The marker is counted inside max_chars. Of the remaining content budget
    k = max_chars - len(marker), the first int(k * head_ratio) and last
    int(k * tail_ratio) characters of text are kept verbatim.
    """
    if len(text) <= max_chars:
        return text
    budget = max_chars - len(marker)
    if budget <= 0:
        return text[: max(max_chars, 0)]
    keep_head = int(budget * head_ratio)
    keep_tail = int(budget * tail_ratio)
    tail = text[len(text) - keep_tail :] if keep_tail > 0 else ""
    return text[:keep_head] + marker + tail


def truncate_head(text: str, max_chars: int, note: str = SYSTEM_TRUNCATION_NOTE) -> str:
    """Keep the start of text and append note, staying within max_chars."""
    if len(text) <= max_chars:
        return text
    keep = max_chars - len(note)
    if keep <= 0:
        return text[: max(max_chars, 0)]
    return text[:keep] + note


@dataclass(frozen=True)
class TokenBreakdown:
    """Estimated tokens per request component."""

    system: int
    user: int
    output: int
    total: int


@dataclass(frozen=True)
class TokenValidation:
    """Result of a fail-fast budget check."""

    valid: bool
    estimated_total: int
    breakdown: TokenBreakdown
    error: str | None = None


@dataclass(frozen=True)
class ClampResult:
    """Clamped prompt pair."""

    system: str
    user: str
    estimated_tokens: int
    clamped: bool


class TokenBudgetEnforcer:
    """Keep system + user prompts inside a model's input budget."""

    def __init__(self, config: TokenBudgetConfig | None = None) -> None:
        self._config = config or TokenBudgetConfig()
        if self._config.head_ratio + self._config.tail_ratio > 1:
            raise ValueError("head_ratio + tail_ratio must not exceed 1")

    @property
    def config(self) -> TokenBudgetConfig:
        return self._config

    def estimate_tokens(self, text: str) -> int:
        """Estimate tokens for text with the configured ratio."""
        return estimate_tokens(text, self._config.chars_per_token)

    def _chars_for(self, tokens: int) -> int:
        return max(int(tokens * self._config.chars_per_token), 0)

    def validate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_output_tokens: int = 8192,
        model_context_limit: int = 200000,
    ) -> TokenValidation:
        """Check system + user + output against the model limit."""
        system_tokens = self.estimate_tokens(system_prompt)
        user_tokens = self.estimate_tokens(user_prompt)
        total = system_tokens + user_tokens + max_output_tokens
        breakdown = TokenBreakdown(
            system=system_tokens,
            user=user_tokens,
            output=max_output_tokens,
            total=total,
        )
        if total > model_context_limit:
            return TokenValidation(
                valid=False,
                estimated_total=total,
                breakdown=breakdown,
                error=(
                    f"Total tokens ({total}) exceeds model limit ({model_context_limit}). "
                    f"System: {system_tokens}, User: {user_tokens}, Output: {max_output_tokens}"
                ),
            )
        return TokenValidation(valid=True, estimated_total=total, breakdown=breakdown)

    def input_budget(self, context_limit_tokens: int, max_output_tokens: int) -> int:
        """Tokens available for system + user after output and safety buffer.

        Raises:
            TokenBudgetError: If nothing is left for the input.

        """
        budget = context_limit_tokens - max_output_tokens - self._config.safety_buffer_tokens
        if budget <= 0:
            raise TokenBudgetError(
                f"No input budget: context limit {context_limit_tokens}, "
                f"max output {max_output_tokens}, buffer {self._config.safety_buffer_tokens}"
            )
        return budget

    def clamp(
        self,
        system_prompt: str,
        user_prompt: str,
        context_limit_tokens: int = 32768,
        max_output_tokens: int = 8192,
    ) -> ClampResult:
        """Strip binary content and truncate prompts to fit the input budget."""
        if not isinstance(system_prompt, str) or not isinstance(user_prompt, str):
            raise TypeError("System and user prompts must be strings")

        clean_system = strip_binary_content(system_prompt)
        clean_user = strip_binary_content(user_prompt)
        budget = self.input_budget(context_limit_tokens, max_output_tokens)

        system_tokens = self.estimate_tokens(clean_system)
        user_tokens = self.estimate_tokens(clean_user)
        if system_tokens + user_tokens <= budget:
            return ClampResult(
                system=clean_system,
                user=clean_user,
                estimated_tokens=system_tokens + user_tokens,
                clamped=clean_system != system_prompt or clean_user != user_prompt,
            )

        final_system = clean_system
        max_system_tokens = int(budget * self._config.system_share)
        if system_tokens > max_system_tokens:
            final_system = truncate_head(clean_system, self._chars_for(max_system_tokens))

        user_budget = budget - self.estimate_tokens(final_system)
        final_user = clean_user
        if self.estimate_tokens(clean_user) > user_budget:
            final_user = truncate_middle(
                clean_user,
                self._chars_for(user_budget),
                head_ratio=self._config.head_ratio,
                tail_ratio=self._config.tail_ratio,
            )

        return ClampResult(
            system=final_system,
            user=final_user,
            estimated_tokens=self.estimate_tokens(final_system) + self.estimate_tokens(final_user),
            clamped=True,
        )
