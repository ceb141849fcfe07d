"""TOML configuration loader with env overrides."""

import logging
import os
import tomllib
from pathlib import Path

from specflow.domain.ports.config import (
    AppConfig,
    ContextFilesConfig,
    GenerationConfig,
    OpenRouterConfig,
    PersistenceConfig,
    SecurityConfig,
    ServerConfig,
    TokenBudgetConfig,
)

logger = logging.getLogger(__name__)


def _load_toml(path: Path) -> dict:
    """Load TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _env_number(config: dict, section: str, key: str, env: str, cast: type) -> None:
    """Set config[section][key] from a numeric env var; invalid values are ignored."""
    raw = os.getenv(env)
    if not raw:
        return
    try:
        config.setdefault(section, {})[key] = cast(raw)
    except ValueError:
        logger.warning("Invalid %s env value: %r, ignoring", env, raw)


def _apply_env_overrides(config: dict) -> dict:
    """Apply environment variable overrides."""
    if key := os.getenv("OPENROUTER_API_KEY"):
        config.setdefault("openrouter", {})["api_key"] = key.strip()
    if base_url := os.getenv("OPENROUTER_BASE_URL"):
        config.setdefault("openrouter", {})["base_url"] = base_url.strip()
    if model := os.getenv("SPECFLOW_DEFAULT_MODEL"):
        config.setdefault("generation", {})["default_model"] = model.strip()
    _env_number(config, "generation", "timeout_seconds", "GENERATION_TIMEOUT", float)
    _env_number(config, "server", "port", "PORT", int)
    if level := os.getenv("LOG_LEVEL"):
        config.setdefault("logging", {})["level"] = level.upper()
    if path := os.getenv("LOG_FILE"):
        config.setdefault("logging", {})["file"] = path.strip()
    if origins := os.getenv("CORS_ORIGINS"):
        config.setdefault("security", {})["cors_origins"] = [o.strip() for o in origins.split(",")]
    _env_number(config, "security", "generate_requests_per_window", "RATE_LIMIT_PER_MINUTE", int)
    if data_dir := os.getenv("SPECFLOW_DATA_DIR"):
        config.setdefault("persistence", {})["data_dir"] = data_dir.strip()
    return config


def load_config(config_dir: Path | None = None) -> AppConfig:
    """Load configuration from TOML files with env overrides.

    Loads default.toml, then development.toml if exists (section-level merge).
    """
    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent.parent.parent / "config"

    config: dict = {}

    default_path = config_dir / "default.toml"
    if default_path.exists():
        config = _load_toml(default_path)

    dev_path = config_dir / "development.toml"
    if dev_path.exists():
        dev_config = _load_toml(dev_path)
        for key, value in dev_config.items():
            if isinstance(value, dict) and key in config and isinstance(config[key], dict):
                config[key] = {**config[key], **value}
            else:
                config[key] = value

    config = _apply_env_overrides(config)

    logging_raw = config.get("logging") or {}
    models_raw = config.get("models") or {}

    return AppConfig(
        server=ServerConfig(**(config.get("server") or {})),
        openrouter=OpenRouterConfig(**(config.get("openrouter") or {})),
        generation=GenerationConfig(**(config.get("generation") or {})),
        token_budget=TokenBudgetConfig(**(config.get("token_budget") or {})),
        context_files=ContextFilesConfig(**(config.get("context_files") or {})),
        persistence=PersistenceConfig(**(config.get("persistence") or {})),
        security=SecurityConfig(**(config.get("security") or {})),
        models_cache_ttl_seconds=float(models_raw.get("cache_ttl_seconds", 300)),
        log_level=logging_raw.get("level", "INFO"),
        log_file=(logging_raw.get("file") or "").strip(),
        log_rotation_max_mb=int(logging_raw.get("log_rotation_max_mb", 5)),
        log_rotation_backups=int(logging_raw.get("log_rotation_backups", 3)),
    )
