"""Tests for token estimation, validation and middle-out clamping."""

import pytest

from specflow.domain.errors import TokenBudgetError
from specflow.domain.ports.config import TokenBudgetConfig
from specflow.domain.services.token_budget import (
    SYSTEM_TRUNCATION_NOTE,
    TRUNCATION_MARKER,
    TokenBudgetEnforcer,
    estimate_tokens,
    strip_binary_content,
    truncate_head,
    truncate_middle,
)


def _prose(n_words: int) -> str:
    """Word text that never looks like base64 (spaces break runs)."""
    words = ["alpha", "beta", "gamma", "delta", "omega"]
    return " ".join(words[i % len(words)] + str(i % 10) for i in range(n_words))


class TestEstimateTokens:
    def test_empty(self):
        assert estimate_tokens("") == 0

    def test_rounds_up(self):
        assert estimate_tokens("a" * 37) == 10
        assert estimate_tokens("a" * 38) == 11


class TestStripBinaryContent:
    def test_data_url(self):
        text = "see data:image/png;base64,iVBORw0KGgoAAAANSUhEUg== here"
        assert strip_binary_content(text) == "see [BINARY_DATA_REMOVED] here"

    def test_long_base64_run(self):
        assert strip_binary_content("x " + "A" * 300 + " y") == "x [BINARY_SEQUENCE_REMOVED] y"

    def test_short_run_kept(self):
        text = "token " + "A" * 150
        assert strip_binary_content(text) == text

    def test_control_run(self):
        text = "start\x00" + "\x01" * 12 + "end"
        assert strip_binary_content(text) == "start[BINARY_CONTENT_REMOVED]end"


class TestTruncation:
    def test_middle_out_preserves_edges(self):
        text = "".join(chr(97 + i % 26) for i in range(5000))
        result = truncate_middle(text, 1000)

        k = 1000 - len(TRUNCATION_MARKER)
        assert result.startswith(text[: int(k * 0.6)])
        assert result.endswith(text[-int(k * 0.35) :])
        assert TRUNCATION_MARKER in result
        assert len(result) <= 1000

    def test_middle_out_short_text_unchanged(self):
        assert truncate_middle("short", 100) == "short"

    def test_truncate_head_counts_note(self):
        text = "s" * 500
        result = truncate_head(text, 200)
        assert len(result) == 200
        assert result.endswith(SYSTEM_TRUNCATION_NOTE)
        assert result.startswith("s" * (200 - len(SYSTEM_TRUNCATION_NOTE)))


class TestValidate:
    def test_within_limit(self):
        enforcer = TokenBudgetEnforcer()
        result = enforcer.validate("x" * 370, "y" * 370, max_output_tokens=100, model_context_limit=300)
        assert result.valid is True
        assert result.breakdown.total == 300

    def test_over_limit_names_components(self):
        enforcer = TokenBudgetEnforcer()
        result = enforcer.validate("x" * 370, "y" * 370, max_output_tokens=100, model_context_limit=250)
        assert result.valid is False
        assert result.estimated_total == 300
        assert "System: 100" in result.error
        assert "User: 100" in result.error
        assert "Output: 100" in result.error


class TestClamp:
    @pytest.fixture
    def enforcer(self) -> TokenBudgetEnforcer:
        return TokenBudgetEnforcer()

    def test_within_budget_unchanged(self, enforcer):
        result = enforcer.clamp("system", "user prompt")
        assert result.system == "system"
        assert result.user == "user prompt"
        assert result.clamped is False

    def test_binary_stripped_marks_clamped(self, enforcer):
        result = enforcer.clamp("system", "img data:image/png;base64,AAAA")
        assert "[BINARY_DATA_REMOVED]" in result.user
        assert result.clamped is True

    def test_respects_budget(self, enforcer):
        system = _prose(10_000)
        user = _prose(60_000)
        result = enforcer.clamp(system, user, context_limit_tokens=32768, max_output_tokens=8192)

        budget = 32768 - 8192 - 256
        assert result.clamped is True
        assert result.estimated_tokens <= budget
        assert enforcer.estimate_tokens(result.system) + enforcer.estimate_tokens(result.user) <= budget
        assert result.system.endswith(SYSTEM_TRUNCATION_NOTE)
        assert TRUNCATION_MARKER in result.user
        assert result.user.startswith(user[:1000])
        assert result.user.endswith(user[-1000:])

    def test_idempotent(self, enforcer):
        first = enforcer.clamp(_prose(10_000), _prose(60_000), 32768, 8192)
        second = enforcer.clamp(first.system, first.user, 32768, 8192)
        assert second.system == first.system
        assert second.user == first.user
        assert second.clamped is False

    def test_large_user_only(self, enforcer):
        result = enforcer.clamp("short system", _prose(100_000), 32768, 8192)
        assert result.system == "short system"
        assert result.estimated_tokens <= 32768 - 8192 - 256

    def test_no_input_budget_raises(self, enforcer):
        with pytest.raises(TokenBudgetError):
            enforcer.clamp("s", "u", context_limit_tokens=8192, max_output_tokens=8192)

    def test_rejects_non_string(self, enforcer):
        with pytest.raises(TypeError):
            enforcer.clamp("s", None)  # type: ignore[arg-type]


class TestEnforcerConfig:
    def test_ratios_must_fit(self):
        with pytest.raises(ValueError, match="head_ratio"):
            TokenBudgetEnforcer(TokenBudgetConfig(head_ratio=0.7, tail_ratio=0.5))

    def test_custom_constants(self):
        enforcer = TokenBudgetEnforcer(TokenBudgetConfig(chars_per_token=4.0, safety_buffer_tokens=0))
        assert enforcer.estimate_tokens("a" * 8) == 2
        assert enforcer.input_budget(1000, 200) == 800
