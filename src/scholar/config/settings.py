"""Application settings loaded from environment variables and config files."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, PositiveFloat, PositiveInt, SecretStr
from pydantic.networks import PostgresDsn
from pydantic_settings import BaseSettings, SettingsConfigDict

from scholar.config import SERVICE_LIMITS_PATH


class RetryPolicy(BaseModel):
    """Exponential backoff settings for a remote service."""

    max_attempts: PositiveInt = 3
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=30.0, ge=0.0)

    model_config = ConfigDict(extra="forbid")

    def delay_for(self, attempt: int) -> float:
        """Return the backoff delay before retry number ``attempt`` (zero based)."""

        return min(self.base_delay_seconds * (2**attempt), self.max_delay_seconds)


class YouTubeLimits(BaseModel):
    """Quota budget for the YouTube Data API."""

    daily_quota: PositiveInt = 10_000
    warning_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    critical_threshold: float = Field(default=0.95, gt=0.0, le=1.0)
    quota_costs: Dict[str, PositiveInt] = Field(default_factory=lambda: {"search": 100, "videos_list": 1})
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    request_timeout_seconds: PositiveFloat = 10.0

    model_config = ConfigDict(extra="forbid")


class ModelCostLimits(BaseModel):
    """Spend limits applied to the text-completion service."""

    daily_limit: PositiveFloat = 5.00
    per_video_limit: PositiveFloat = 0.10
    warning_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    request_timeout_seconds: PositiveFloat = 30.0

    model_config = ConfigDict(extra="forbid")


class ServiceLimitConfig(BaseModel):
    """Top-level configuration for all external service limits."""

    youtube: YouTubeLimits = Field(default_factory=YouTubeLimits)
    openai: ModelCostLimits = Field(default_factory=ModelCostLimits)

    model_config = ConfigDict(extra="forbid")


def _load_service_limits(limits_path: Path) -> ServiceLimitConfig:
    if not limits_path.exists():
        return ServiceLimitConfig()

    raw_data = yaml.safe_load(limits_path.read_text(encoding="utf-8")) or {}
    return ServiceLimitConfig.model_validate(raw_data)


class Settings(BaseSettings):
    """Primary application settings for the Scholar CLI and services."""

    database_url: Optional[PostgresDsn] = Field(default=None, alias="DATABASE_URL")
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    youtube_api_key: Optional[SecretStr] = Field(default=None, alias="YOUTUBE_API_KEY")
    langfuse_public_key: Optional[SecretStr] = Field(default=None, alias="LANGFUSE_PUBLIC_KEY")
    langfuse_secret_key: Optional[SecretStr] = Field(default=None, alias="LANGFUSE_SECRET_KEY")
    langfuse_host: Optional[HttpUrl] = Field(default=None, alias="LANGFUSE_HOST")

    daily_cost_limit: Optional[PositiveFloat] = Field(default=None, alias="DAILY_COST_LIMIT")
    per_video_cost_limit: Optional[PositiveFloat] = Field(default=None, alias="PER_VIDEO_COST_LIMIT")
    cost_warning_threshold: Optional[float] = Field(default=None, gt=0.0, le=1.0, alias="COST_WARNING_THRESHOLD")
    usage_state_path: Path = Field(default=Path(".scholar/usage.json"), alias="USAGE_STATE_PATH")

    analysis_cache_ttl_seconds: Optional[PositiveInt] = Field(default=None, alias="ANALYSIS_CACHE_TTL_SECONDS")
    filter_cache_ttl_seconds: PositiveInt = Field(default=300, alias="FILTER_CACHE_TTL_SECONDS")
    default_transcript_language: str = Field(default="en", alias="DEFAULT_TRANSCRIPT_LANGUAGE")

    service_limits: ServiceLimitConfig = Field(
        default_factory=lambda: _load_service_limits(SERVICE_LIMITS_PATH)
    )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def resolved_cost_limits(self) -> ModelCostLimits:
        """Merge environment overrides on top of the static cost limits."""

        base = self.service_limits.openai
        return base.model_copy(
            update={
                "daily_limit": self.daily_cost_limit or base.daily_limit,
                "per_video_limit": self.per_video_cost_limit or base.per_video_limit,
                "warning_threshold": self.cost_warning_threshold or base.warning_threshold,
            }
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()


__all__ = [
    "ModelCostLimits",
    "RetryPolicy",
    "ServiceLimitConfig",
    "Settings",
    "YouTubeLimits",
    "get_settings",
]
