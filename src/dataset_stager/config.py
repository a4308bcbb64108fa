"""Application configuration."""

import os
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    openai_max_tokens: int = Field(default=300, gt=0)
    openai_image_detail: Literal["auto", "low", "high"] = "high"
    caption_service_url: str | None = None
    caption_request_timeout_seconds: float = Field(default=60.0, gt=0)
    caption_prompt_strategy: Literal["product", "scene"] = "product"

    min_resolution: int = Field(default=900, gt=0)
    caption_max_attempts: int = Field(default=3, ge=1)
    caption_base_delay_seconds: float = Field(default=1.0, ge=0)
    caption_backoff_multiplier: float = Field(default=2.0, ge=1)
    caption_max_backoff_seconds: float = Field(default=10.0, ge=0)
    caption_max_elapsed_seconds: float = Field(default=120.0, gt=0)
    caption_request_delay_seconds: float = Field(default=1.0, ge=0)
    caption_sub_batch_size: int = Field(default=0, ge=0)
    caption_sub_batch_delay_seconds: float = Field(default=5.0, ge=0)

    staging_backend: Literal["memory", "supabase"] = "memory"
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    staging_table: str = "staging_entries"
    session_idle_seconds: int = Field(default=3600, gt=0)

    export_suffix: str = "_dataset.zip"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
