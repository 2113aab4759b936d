"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    # Storage
    storage_backend: Literal["memory", "firestore"] = "memory"
    gcp_project_id: str = ""
    firestore_emulator_host: str | None = None
    storage_timeout_seconds: float = 10.0

    # LLM Providers
    openai_api_key: str = ""
    google_api_key: str = ""
    anthropic_api_key: str = ""

    # LiteLLM
    litellm_primary_model: str = "gpt-4o-mini"
    litellm_fallback_model: str = "gemini/gemini-1.5-flash"

    # Planner
    planner_timeout_seconds: float = 25.0
    planner_temperature: float = 0.3
    planner_max_tokens: int = 800

    # Agent pipeline
    context_window_messages: int = 10
    function_timeout_seconds: float = 20.0
    dedup_window_turns: int = 2
    dedup_window_seconds: int = 300
    default_locale: Literal["pt-BR", "en"] = "pt-BR"
    allow_test_mode: bool = True

    # Rate limiting
    inbound_rate_limit_requests: int = 20
    inbound_rate_limit_window: int = 60
    search_rate_limit_requests: int = 30
    search_rate_limit_window: int = 60

    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_whatsapp_number: str = ""

    # Outbound delivery
    delivery_timeout_seconds: float = 15.0
    delivery_max_concurrency: int = 20

    # Payment provider (PIX)
    payment_api_key: str = ""
    payment_base_url: str = "https://api.abacatepay.com/v1"
    payment_timeout_seconds: float = 15.0
    payment_webhook_secret: str = ""
    payment_webhook_max_age_seconds: int = 300

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def test_mode_enabled(self) -> bool:
        """Test-mode admission bypass is never honoured in production."""
        return self.allow_test_mode and not self.is_production


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
