"""Agent context configuration models."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

SourceScope = Literal["recent", "significant", "all"]
DetailLevel = Literal["basic", "standard", "detailed"]
TimeWindow = Literal["week", "month", "quarter", "year"]


class MoodConfig(BaseModel):
    """Mood tokenizer windows and trend thresholds."""

    mood_window: int = Field(default=5, ge=1)
    trend_window: int = Field(default=10, ge=2)
    max_descriptors: int = Field(default=5, ge=1)
    max_mood_tags: int = Field(default=8, ge=1)
    # Slope per record. Over a full trend_window of 10 this matches a 0.5
    # gap between the newer-half and older-half mean scores.
    improving_threshold: float = 0.1
    declining_threshold: float = -0.1
    volatility_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    # A direction change counts as a swing when either side moves more than this
    volatility_min_swing: float = Field(default=1.0, ge=0.0)
    min_trajectory_records: int = Field(default=3, ge=1)

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "MoodConfig":
        if self.improving_threshold <= 0:
            raise ValueError(
                f"improving_threshold must be positive: {self.improving_threshold}"
            )
        if self.declining_threshold >= 0:
            raise ValueError(
                f"declining_threshold must be negative: {self.declining_threshold}"
            )
        return self


class TimelineConfig(BaseModel):
    """Timeline builder configuration."""

    max_recent_events: int = Field(default=10, ge=1)
    max_key_moments: int = Field(default=10, ge=1)
    key_moment_threshold: float = Field(default=6.67, ge=0.0, le=10.0)
    relationship_scoped: bool = False
    time_window: TimeWindow = "quarter"
    include_relationship_evolution: bool = True
    max_relationship_patterns: int = Field(default=5, ge=1)


class VocabularyConfig(BaseModel):
    """Vocabulary extractor configuration."""

    max_terms_per_category: int = Field(default=8, ge=1)
    source_scope: SourceScope = "recent"
    recent_limit: int = Field(default=20, ge=1)
    significance_cutoff: float = Field(default=6.0, ge=0.0, le=10.0)
    include_evolution: bool = False


class AssemblerConfig(BaseModel):
    """Context assembler configuration."""

    max_tokens: int = Field(default=2000, ge=1)
    relevance_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    include_recommendations: bool = True
    prioritize_recent: bool = True
    recent_bias_limit: int = Field(default=50, ge=1)
    detail_level: DetailLevel = "standard"
    time_window: TimeWindow = "month"
    include_historical: bool = False


class CacheConfig(BaseModel):
    """Assembled context cache configuration."""

    enabled: bool = True
    ttl_seconds: int = Field(default=300, ge=0)  # 5 minutes
    max_entries: int = Field(default=1000, ge=1)


class ContextEngineConfig(BaseModel):
    """Top-level agent context configuration."""

    mood: MoodConfig = Field(default_factory=MoodConfig)
    timeline: TimelineConfig = Field(default_factory=TimelineConfig)
    vocabulary: VocabularyConfig = Field(default_factory=VocabularyConfig)
    assembler: AssemblerConfig = Field(default_factory=AssemblerConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def read_yaml(config_path: str | Path) -> dict[str, Any]:
    """Read a YAML file, substituting ``${ENV_VAR}`` references.

    Unset variables are left as-is.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    content = path.read_text(encoding="utf-8")

    def replacer(match: re.Match) -> str:
        return os.getenv(match.group(1), match.group(0))

    content = _ENV_PATTERN.sub(replacer, content)

    try:
        return yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        logger.critical(f"Error parsing YAML file: {e}")
        raise


def _format_validation_error(error: ValidationError) -> str:
    messages = []
    for err in error.errors():
        location = " -> ".join(str(loc) for loc in err["loc"])
        messages.append(f"  - '{location}': {err['msg']} (type: {err['type']})")
    return "\n".join(messages)


def load_config(config_path: str | Path) -> ContextEngineConfig:
    """Load and validate a ContextEngineConfig from YAML.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValidationError: If the content does not match the config schema.
    """
    data = read_yaml(config_path)
    try:
        return ContextEngineConfig(**data)
    except ValidationError as e:
        logger.critical(
            f"Context configuration validation failed ({config_path}):\n"
            f"{_format_validation_error(e)}"
        )
        raise
