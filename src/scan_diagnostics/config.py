"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    supabase_images_bucket: str = "diagnostic-images"
    admin_token: str
    openai_api_key: str
    openai_base_url: str | None = None
    openai_model: str = "gpt-4.1"
    analysis_max_output_tokens: int = 4000
    analysis_timeout_seconds: float = 300.0
    batch_size: int = 20
    max_retries: int = 3
    retry_base_delay_seconds: float = 2.0
    inter_batch_delay_seconds: float = 2.0
    max_images_per_session: int = 200
    worker_lease_seconds: float = 1200.0
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
