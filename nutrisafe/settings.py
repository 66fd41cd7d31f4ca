"""Pydantic v2 Settings Management for NutriSafe.

This module provides type-safe, validated configuration using Pydantic v2
with support for environment variables, .env files, and YAML configuration.

Features:
    - Type-safe settings with full validation
    - Environment variable support with NUTRISAFE_ prefix
    - YAML configuration file loading
    - Nested configuration models
    - Evaluation threshold policy kept as explicit, auditable configuration
"""

from __future__ import annotations

import os
from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nutrisafe.clinical_types import DEFAULT_LOW_CONFIDENCE_LEVELS, EvidenceLevel
from nutrisafe.exceptions import ConfigFileNotFoundError, ConfigValidationError

CONFIG_PATH_ENV = "NUTRISAFE_CONFIG_PATH"


class LogLevel(StrEnum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppSettings(BaseModel):
    """Application-level settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = "NutriSafe"
    version: str = "1.0.0"
    log_level: LogLevel = LogLevel.INFO
    json_logs: bool = False
    log_file: str | None = None


class KnowledgeBaseSettings(BaseModel):
    """Where the knowledge base comes from and how long versions stay usable."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: Path | None = None
    retained_versions: Annotated[int, Field(ge=0, le=50)] = 3
    max_age_days: Annotated[float, Field(gt=0)] | None = None

    @field_validator("path", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path | None) -> Path | None:
        return Path(v) if isinstance(v, str) else v


class EngineSettings(BaseModel):
    """Pipeline behaviour."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    low_confidence_levels: list[EvidenceLevel] = Field(
        default_factory=lambda: sorted(DEFAULT_LOW_CONFIDENCE_LEVELS, key=lambda e: e.rank, reverse=True)
    )
    review_threshold: Annotated[int, Field(ge=1)] = 3
    max_workers: Annotated[int, Field(ge=1, le=64)] = 4
    fail_closed_message: str = "Unable to verify safety; consult a healthcare professional"


class ThresholdPolicy(BaseModel):
    """Pass bar applied to evaluation reports by CI.

    These values are policy inputs that need clinical-safety sign-off; the
    harness only reports numbers and never applies them itself.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_accuracy: Annotated[float, Field(ge=0.0, le=1.0)] = 0.985
    max_false_negatives: Annotated[int, Field(ge=0)] = 0
    max_false_negative_rate: Annotated[float, Field(ge=0.0, le=1.0)] = 0.001
    min_allergen_sensitivity: Annotated[float, Field(ge=0.0, le=1.0)] = 0.99
    max_false_positive_rate: Annotated[float, Field(ge=0.0, le=1.0)] | None = None
    max_unverified_scenarios: Annotated[int, Field(ge=0)] = 0
    max_unexpected_issues: Annotated[int, Field(ge=0)] = 0


class EvaluationSettings(BaseModel):
    """Regression corpus settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    scenarios_path: Path | None = None
    policy: ThresholdPolicy = Field(default_factory=ThresholdPolicy)
    output_path: Path = Path("results/")

    @field_validator("scenarios_path", "output_path", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path | None) -> Path | None:
        return Path(v) if isinstance(v, str) else v


class Settings(BaseSettings):
    """Main settings class with environment variable support.

    Environment variables are prefixed with NUTRISAFE_ and use double underscore
    for nested settings (e.g., NUTRISAFE_APP__LOG_LEVEL=DEBUG).
    """

    model_config = SettingsConfigDict(
        env_prefix="NUTRISAFE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
    )

    app: AppSettings = Field(default_factory=AppSettings)
    knowledge_base: KnowledgeBaseSettings = Field(default_factory=KnowledgeBaseSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    evaluation: EvaluationSettings = Field(default_factory=EvaluationSettings)

    @classmethod
    def from_yaml(cls, path: str | Path, required: bool = False) -> Settings:
        """Load settings from YAML file, merged with environment variables.

        Raises:
            ConfigFileNotFoundError: If ``required`` and the file is missing.
            ConfigValidationError: If the file does not match the schema.
        """
        yaml_path = Path(path)
        if not yaml_path.exists():
            if required:
                raise ConfigFileNotFoundError(str(yaml_path), [str(yaml_path.resolve())])
            return cls()

        with yaml_path.open("r", encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        try:
            return cls(**yaml_config)
        except ValidationError as e:
            errors = [{"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]} for err in e.errors()]
            raise ConfigValidationError(errors, str(yaml_path)) from e

    def model_dump_yaml(self) -> str:
        """Export settings to YAML format."""
        data = self.model_dump(mode="json")
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    ``NUTRISAFE_CONFIG_PATH`` names a required config file; otherwise
    ``config.yaml`` in the working directory is used when present.
    Settings are loaded once and cached. To reload, call get_settings.cache_clear().
    """
    explicit = os.environ.get(CONFIG_PATH_ENV)
    if explicit:
        return Settings.from_yaml(explicit, required=True)
    config_path = Path("config.yaml")
    if config_path.exists():
        return Settings.from_yaml(config_path)
    return Settings()


__all__ = [
    "Settings",
    "get_settings",
    "AppSettings",
    "KnowledgeBaseSettings",
    "EngineSettings",
    "EvaluationSettings",
    "ThresholdPolicy",
    "LogLevel",
    "CONFIG_PATH_ENV",
]
