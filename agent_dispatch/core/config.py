from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulingSettings(BaseModel):
    max_concurrency: int = Field(5, ge=1, description="Maximum number of tasks running at once.")
    timeout_ms: int = Field(1_800_000, ge=1, description="Per-task timeout applied to every scheduled task.")
    fail_fast: bool = Field(False, description="Cancel the remaining batch after the first failure.")
    cancel_grace_ms: int | None = Field(
        2_000,
        ge=0,
        description="How long a timed out or cancelled task may keep its slot before asyncio cancellation is delivered.",
    )


class ProviderSettings(BaseModel):
    fallback_order: list[str] = Field(
        default_factory=lambda: ["claude", "gemini", "copilot"],
        description="Process-wide provider preference used when an agent does not pin one.",
    )
    default_models: dict[str, str] = Field(
        default_factory=dict,
        description="Default model per provider name, used when neither the mention nor the agent sets one.",
    )

    @field_validator("fallback_order")
    @classmethod
    def _strip_names(cls, value: list[str]) -> list[str]:
        cleaned: list[str] = []
        for name in value:
            name = name.strip()
            if name and name not in cleaned:
                cleaned.append(name)
        return cleaned


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    json_logs: bool = Field(True, description="Render log events as JSON instead of console lines.")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class TrackingSettings(BaseModel):
    enabled: bool = Field(True, description="Keep an in-memory log record per executed task.")
    max_records: int = Field(500, ge=1, description="Oldest task records are evicted past this size.")


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    scheduling: SchedulingSettings = Field(default_factory=SchedulingSettings)  # type: ignore[arg-type]
    providers: ProviderSettings = Field(default_factory=ProviderSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_prefix="AGENT_DISPATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
