"""Configuration management for oh-my-ccg."""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Project-relative directory holding config.json and state/
PROJECT_DIR_NAME = ".oh-my-ccg"
CONFIG_FILE_NAME = "config.json"


class Settings(BaseSettings):
    """Process-wide settings, read once from the environment at start."""

    model_config = SettingsConfigDict(
        env_prefix="OH_MY_CCG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    json_logs: bool = False

    # Provider availability
    codex_enabled: bool = True
    gemini_enabled: bool = True

    # Role templates for external model prompts
    prompts_dir: Path = Field(default_factory=lambda: Path(__file__).parent / "prompts")

    # Job polling
    wait_default_timeout_ms: int = 300_000
    wait_max_timeout_ms: int = 3_600_000


class BackendSettings(BaseSettings):
    """Tunables shared by every external model backend.

    All durations are milliseconds, matching the environment variables the
    plugin has always read.
    """

    model: str = ""
    timeout: int = 300_000  # 5 min hard wall-clock budget per CLI run
    retry_count: int = 3
    retry_delay: int = 5_000
    retry_max_delay: int = 60_000

    @field_validator("timeout", "retry_delay", "retry_max_delay")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Durations must be positive."""
        if v <= 0:
            raise ValueError("Duration must be a positive number of milliseconds")
        return v

    @field_validator("retry_count")
    @classmethod
    def validate_retry_count(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Retry count cannot be negative")
        return v


class GeminiSettings(BackendSettings):
    model_config = SettingsConfigDict(
        env_prefix="OH_MY_CCG_GEMINI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    model: str = "gemini-3-pro-preview"


class CodexSettings(BackendSettings):
    model_config = SettingsConfigDict(
        env_prefix="OH_MY_CCG_CODEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    model: str = "gpt-5.3-codex"


settings = Settings()
gemini_settings = GeminiSettings()
codex_settings = CodexSettings()


# === Project config (.oh-my-ccg/config.json) ===


class ProviderConfig(BaseModel):
    enabled: bool = True
    default_role: str = Field(default="executor", alias="defaultRole")

    model_config = {"populate_by_name": True}


class ModelsConfig(BaseModel):
    codex: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(enabled=True, default_role="architect")
    )
    gemini: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(enabled=True, default_role="designer")
    )


class RalphConfig(BaseModel):
    max_iterations: int = Field(default=10, alias="maxIterations", ge=1)
    linked_team: bool = Field(default=False, alias="linkedTeam")

    model_config = {"populate_by_name": True}


class AutopilotConfig(BaseModel):
    context_threshold: int = Field(default=80, alias="contextThreshold", ge=1, le=100)
    linked_ralph: bool = Field(default=False, alias="linkedRalph")
    linked_team: bool = Field(default=False, alias="linkedTeam")

    model_config = {"populate_by_name": True}


class ProjectConfig(BaseModel):
    """Per-project configuration merged over the built-in defaults."""

    version: str = "1.0.0"
    default_model: str = Field(default="sonnet", alias="defaultModel")
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    ralph: RalphConfig = Field(default_factory=RalphConfig)
    autopilot: AutopilotConfig = Field(default_factory=AutopilotConfig)

    model_config = {"populate_by_name": True, "extra": "ignore"}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``.

    Nested dicts merge key by key; any other value in ``override`` replaces
    the base value. ``None`` values in ``override`` are ignored.
    """
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            result[key] = deep_merge(current, value)
        elif value is not None:
            result[key] = value
    return result


def load_project_config(workdir: Path | str) -> ProjectConfig:
    """Load ``.oh-my-ccg/config.json`` for a project, falling back to defaults."""
    config_path = Path(workdir) / PROJECT_DIR_NAME / CONFIG_FILE_NAME
    defaults = ProjectConfig().model_dump(by_alias=True)

    if not config_path.exists():
        return ProjectConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            user_config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read project config {config_path}, using defaults: {e}")
        return ProjectConfig()

    if not isinstance(user_config, dict):
        logger.warning(f"Project config {config_path} is not an object, using defaults")
        return ProjectConfig()

    try:
        return ProjectConfig.model_validate(deep_merge(defaults, user_config))
    except ValidationError as e:
        logger.warning(f"Invalid project config, using defaults: {e}")
        return ProjectConfig()
