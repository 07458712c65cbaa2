"""Centralized configuration via Pydantic Settings.

All values loaded from environment variables prefixed with ZAPMAIL_.
The planner's reasoning tier reads the conventional OPENAI_API_KEY.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mailgate.core.context import ServiceProvider


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ZAPMAIL_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Upstream API
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ZAPMAIL_API_KEY", "ZAPMAIL_API_TOKEN", "api_key"),
    )
    api_base: str = "https://api.zapmail.ai/api"
    workspace_key: str | None = None
    service_provider: ServiceProvider = ServiceProvider.GOOGLE

    # Documentation service (endpoint manifest + per-slug docs)
    docs_base_url: str = "https://docs.zapmail.ai"

    # ── Request executor ───────────────────────────────────────
    timeout_s: float = 30.0
    max_retries: int = 3
    enable_cache: bool = True
    enable_metrics: bool = True
    cache_max_size: int = 1000
    cache_ttl_s: float = 300.0
    rate_limit_max_requests: int = 10
    rate_limit_window_s: float = 60.0

    # ── Pacing between dependent calls ─────────────────────────
    bulk_update_delay_s: float = 1.0
    plan_step_delay_s: float = 0.25

    # ── Reasoning planner (enabled when a key is present) ──────
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    planner_model: str = "gpt-4o-mini"
    planner_base_url: str = "https://api.openai.com/v1"
    planner_timeout_s: float = 60.0

    # Application
    log_level: str = "INFO"
    env: str = "development"

    @field_validator("api_key", "workspace_key", "openai_api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("service_provider", mode="before")
    @classmethod
    def _upper_provider(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("api_base", "docs_base_url", "planner_base_url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def llm_planner_enabled(self) -> bool:
        return bool(self.openai_api_key)


settings = Settings()  # type: ignore[call-arg]


@dataclass(frozen=True)
class LLMPreset:
    """Named parameter preset for internal LLM calls."""

    temperature: float
    max_tokens: int


class LLMPresets:
    """Central registry of LLM parameter presets used for internal calls."""

    PLANNER = LLMPreset(temperature=0.2, max_tokens=2000)
