"""Application configuration via pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "Framecast"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    secret_key: str = Field(..., description="JWT signing secret")

    # Database
    db_host: str = "localhost"
    db_port: int = 3306
    db_name: str = "framecast"
    db_user: str = "framecast"
    db_password: str = Field(..., description="MySQL password")

    @property
    def database_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def database_url_sync(self) -> str:
        return (
            f"mysql+pymysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # JWT (tokens are issued elsewhere; we only verify them)
    jwt_algorithm: str = "HS256"

    # OpenAI image generation
    openai_api_key: str | None = None
    openai_api_base: str = "https://api.openai.com/v1"
    image_model: str = "dall-e-3"
    image_quality: Literal["standard", "hd"] = "standard"
    image_request_timeout: float = 120.0

    # Gallery storage
    gallery_dir: str = "data/gallery"
    public_base_url: str = "http://localhost:8000"

    # TRMNL device sync
    trmnl_webhook_base: str = "https://usetrmnl.com/api/custom_plugins"

    # Scheduler
    scheduler_poll_seconds: int = 60
    token_purge_seconds: int = 3600
    max_scheduled_jobs_per_user: int = 10

    # Batch processor
    batch_poll_seconds: float = 5.0
    batch_rate_limit_seconds: float = 30.0
    device_sync_stagger_seconds: float = 600.0
    batch_item_lease_seconds: int = 300
    batch_item_max_attempts: int = 3
    max_batch_size: int = 10

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
