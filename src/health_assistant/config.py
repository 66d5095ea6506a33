"""Application configuration."""

import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    openai_api_key: str
    openai_planner_model: str = "gpt-5.2"
    openai_intent_model: str = "gpt-4.1-nano"
    openai_reasoning_effort: str | None = "low"
    openai_store: bool = False
    fdc_api_key: str
    fdc_base_url: str = "https://api.nal.usda.gov/fdc/v1"
    supabase_url: str
    supabase_service_key: str
    assistant_user_id: str
    search_limit: int = 18
    detail_prefetch: int = 3
    resolve_workers: int = 3
    silence_check_seconds: float = 1.25
    silence_min_seconds: float = 1.0
    consent_max_words: int = 6
    match_wait_seconds: float = 7.0
    match_wait_policy: Literal["selected", "all"] = "selected"
    history_limit: int = 8
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
