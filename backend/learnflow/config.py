"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

from learnflow.models.schemas import ModelDescriptor, TaskProfile

BACKEND_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # AI provider
    ai_provider: str = "gemini"  # "gemini" or "claude"
    gemini_api_key: str | None = None
    gemini_url: str = "https://generativelanguage.googleapis.com/v1beta"
    anthropic_api_key: str | None = None
    llm_timeout: int = 300
    required_operation: str = "generateContent"

    # Executor retry policy (seconds)
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_backoff_multiplier: float = 2.0

    # Model discovery
    model_cache_ttl: float = 3600.0

    # Quota recovery
    quota_reset_timezone: str = "America/Los_Angeles"
    recovery_extension: float = 3600.0

    # Scheduler
    scheduler_enabled: bool = True
    auto_resume_interval: float = 3600.0
    quota_check_interval: float = 900.0
    cleanup_interval: float = 86400.0
    scheduler_batch_size: int = 50
    content_retention_days: int = 30

    # Request quota tracking
    daily_request_limits: dict[str, int] = {"gemini": 50}
    default_daily_request_limit: int = 100
    hourly_request_warning: int = 5
    request_log_max_entries: int = 10000

    # Paths
    config_dir: Path = BACKEND_ROOT / "config"
    prompts_dir: Path | None = None  # External prompts directory (overrides built-in)

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_ai_clients: str | None = None
    log_level_executor: str | None = None
    log_level_catalog: str | None = None
    log_level_pipeline: str | None = None
    log_level_scheduler: str | None = None
    log_level_jobs: str | None = None
    log_level_quota: str | None = None
    log_level_api: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_prompt(
    stage: str,
    component: str,
    model: str | None = None,
    settings: Settings | None = None,
) -> str:
    """
    Load a prompt template with external folder priority and model-specific fallback.

    Lookup order (first found wins):
    1. prompts_dir/{stage}/{component}_{model_family}.md (external, model-specific)
    2. prompts_dir/{stage}/{component}.md (external, generic)
    3. config_dir/prompts/{stage}/{component}_{model_family}.md (built-in, model-specific)
    4. config_dir/prompts/{stage}/{component}.md (built-in, generic)

    Model family is the model name without its trailing version:
    - "gemini-2.5-flash" -> "gemini"
    - "claude-sonnet-4-5" -> "claude"

    Args:
        stage: Pipeline stage ("summarization", "flashcard_generation", "quiz_generation")
        component: Prompt component ("system", "user")
        model: Model name for model-specific prompts (optional)
        settings: Optional settings instance

    Returns:
        Prompt template content

    Raises:
        FileNotFoundError: If no matching prompt file is found
    """
    if settings is None:
        settings = get_settings()

    model_family = model_family_of(model) if model else None

    paths_to_check: list[Path] = []

    # External prompts directory (highest priority)
    if settings.prompts_dir and settings.prompts_dir.exists():
        if model_family:
            paths_to_check.append(
                settings.prompts_dir / stage / f"{component}_{model_family}.md"
            )
        paths_to_check.append(settings.prompts_dir / stage / f"{component}.md")

    # Built-in prompts directory (fallback)
    builtin_prompts_dir = settings.config_dir / "prompts"
    if model_family:
        paths_to_check.append(builtin_prompts_dir / stage / f"{component}_{model_family}.md")
    paths_to_check.append(builtin_prompts_dir / stage / f"{component}.md")

    for path in paths_to_check:
        if path.exists():
            return path.read_text(encoding="utf-8")

    raise FileNotFoundError(
        f"Prompt not found: stage={stage}, component={component}, model={model}. "
        f"Checked paths: {[str(p) for p in paths_to_check]}"
    )


def model_family_of(model: str) -> str:
    """Extract model family ("gemini-2.5-flash" -> "gemini")."""
    return model.split(":")[0].split("-")[0].rstrip("0123456789.")


def load_models_config(settings: Settings | None = None) -> dict:
    """
    Load model configurations from config/models.yaml.

    Args:
        settings: Optional settings instance

    Returns:
        Models configuration dictionary (known_models, task_profiles)
    """
    if settings is None:
        settings = get_settings()

    models_path = settings.config_dir / "models.yaml"
    with open(models_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_task_profiles(settings: Settings | None = None) -> dict[str, TaskProfile]:
    """
    Load per-task model preferences from config/models.yaml.

    Each entry maps a task type to a primary model and an ordered fallback list.

    Args:
        settings: Optional settings instance

    Returns:
        Dict of task_type -> TaskProfile
    """
    config = load_models_config(settings)
    profiles: dict[str, TaskProfile] = {}

    for task_type, entry in config.get("task_profiles", {}).items():
        profiles[task_type] = TaskProfile(
            task_type=task_type,
            primary=entry["primary"],
            fallbacks=entry.get("fallbacks", []),
        )

    return profiles


def load_known_models(settings: Settings | None = None) -> list[ModelDescriptor]:
    """
    Load the static model list used when provider discovery fails.

    Args:
        settings: Optional settings instance

    Returns:
        List of ModelDescriptor from the known_models section
    """
    config = load_models_config(settings)
    return [ModelDescriptor(**m) for m in config.get("known_models", [])]
