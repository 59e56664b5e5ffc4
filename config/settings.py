"""
Centralized configuration for the Auto-Reply Engine.

This module uses Pydantic Settings to load and validate environment variables.
All engine configuration is centralized here to avoid scattered config files.

Usage:
    from config import settings
    print(settings.ai_model)

    # Components take settings explicitly so tests can build their own
    from config.settings import Settings
    test_settings = Settings(response_sampling_rate=1.0)

Environment Variables:
    See .env.example for all available configuration options.
"""

import logging

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Runtime
    # =========================================================================
    environment: str = "production"  # production | staging | development
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # =========================================================================
    # Webhook (Meta / Instagram)
    # =========================================================================
    webhook_verify_token: str = ""
    app_secret: str = ""
    # Development only. Read once when the app is built, never per request.
    webhook_signature_bypass: bool = False

    # =========================================================================
    # AI Provider (OpenRouter / any OpenAI-compatible endpoint)
    # =========================================================================
    ai_api_key: str = ""
    ai_base_url: str = "https://openrouter.ai/api/v1"
    ai_model: str = "openai/gpt-4o-mini"
    ai_fallback_models: list[str] = []
    ai_timeout_seconds: float = 20.0
    ai_temperature: float = 0.7
    ai_max_tokens: int = 150

    # =========================================================================
    # Instagram Graph API
    # =========================================================================
    graph_api_base_url: str = "https://graph.instagram.com/v22.0"
    graph_api_timeout_seconds: float = 10.0

    # =========================================================================
    # Persistence (Supabase primary, SQLite fallback)
    # =========================================================================
    supabase_url: str = ""
    supabase_key: str = ""
    sqlite_path: str = "autoreply.db"

    # =========================================================================
    # Conversation Memory
    # =========================================================================
    memory_retention_days: int = 3
    cleanup_interval_seconds: int = 3600
    history_prompt_messages: int = 6

    # =========================================================================
    # Stealth Governor (Anti-Detection)
    # =========================================================================
    max_daily_responses: int = 15
    response_sampling_rate: float = 0.25  # Respond to ~25% of eligible events
    min_response_gap_seconds: float = 15.0
    short_message_length: int = 10
    short_message_skip_chance: float = 0.6
    max_replies_per_participant: int = 2
    min_delay_seconds: float = 120.0  # 2 minutes
    max_delay_seconds: float = 600.0  # 10 minutes
    delay_ceiling_seconds: float = 600.0
    long_delay_chance: float = 0.1
    naturalize_enabled: bool = True

    # =========================================================================
    # Deduplication / Anti-Repetition
    # =========================================================================
    dedup_capacity: int = 1000
    reply_history_size: int = 100
    max_reply_length: int = 50

    @field_validator("response_sampling_rate", "short_message_skip_chance", "long_delay_chance")
    @classmethod
    def _check_probability(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("Must be between 0.0 and 1.0")
        return value

    @field_validator("memory_retention_days", "dedup_capacity", "reply_history_size")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Must be at least 1")
        return value

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "Settings":
        if self.min_delay_seconds > self.max_delay_seconds:
            raise ValueError("min_delay_seconds must not exceed max_delay_seconds")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


# Singleton instance for global settings
settings = Settings()
