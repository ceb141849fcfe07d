"""Config Port - application configuration models."""

from pydantic import BaseModel, field_validator


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000


class OpenRouterConfig(BaseModel):
    """Remote completion API (OpenRouter / OpenAI-compatible)."""

    base_url: str = "https://openrouter.ai/api/v1"
    api_key: str = ""
    timeout: float = 120.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    # Attribution headers sent on POST requests
    app_url: str = "http://localhost:8000"
    app_title: str = "SpecFlow"

    @field_validator("max_retries")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        return v


class GenerationConfig(BaseModel):
    """Per-phase generation settings."""

    default_model: str = "anthropic/claude-3.5-sonnet"
    temperature: float = 0.3
    max_tokens: int = 8192
    # Conservative window assumed server-side when clamping (works across most models)
    server_context_limit: int = 32768
    # Fail-fast ceiling checked before any network call
    model_context_limit: int = 200000
    timeout_seconds: float = 180.0


class TokenBudgetConfig(BaseModel):
    """Token estimation and middle-out truncation constants."""

    chars_per_token: float = 3.7
    safety_buffer_tokens: int = 256
    system_share: float = 0.2
    head_ratio: float = 0.6
    tail_ratio: float = 0.35

    @field_validator("system_share", "head_ratio", "tail_ratio")
    @classmethod
    def _ratio(cls, v: float) -> float:
        if not 0 < v < 1:
            raise ValueError("ratios must be between 0 and 1")
        return v


class ContextFilesConfig(BaseModel):
    """Size ceilings for user input embedded in the requirements prompt."""

    max_file_chars: int = 2000
    max_total_chars: int = 5000
    max_description_chars: int = 5000
    max_prompt_chars: int = 12000


class PersistenceConfig(BaseModel):
    """Persistence settings."""

    data_dir: str = "output/state"
    debounce_seconds: float = 2.0


class SecurityConfig(BaseModel):
    """Rate limiting and CORS."""

    generate_requests_per_window: int = 60
    models_requests_per_window: int = 20
    rate_limit_window_seconds: int = 60
    cors_origins: list[str] = ["http://localhost:3000"]


class AppConfig(BaseModel):
    """Full application configuration."""

    server: ServerConfig = ServerConfig()
    openrouter: OpenRouterConfig = OpenRouterConfig()
    generation: GenerationConfig = GenerationConfig()
    token_budget: TokenBudgetConfig = TokenBudgetConfig()
    context_files: ContextFilesConfig = ContextFilesConfig()
    persistence: PersistenceConfig = PersistenceConfig()
    security: SecurityConfig = SecurityConfig()
    models_cache_ttl_seconds: float = 300.0
    log_level: str = "INFO"
    # Log file: path relative to cwd or absolute. Empty = only stdout. Rotation when file exceeds max_mb.
    log_file: str = ""
    log_rotation_max_mb: int = 5
    log_rotation_backups: int = 3
