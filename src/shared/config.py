"""
Application configuration using Pydantic Settings.
Loads from environment variables and .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment ("production" hides internal error detail)
    app_env: str = Field(default="development")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017")
    mongodb_database: str = Field(default="cv_evaluator")

    # OpenAI / LLM
    openai_api_key: SecretStr = Field(default=SecretStr(""))
    openai_base_url: Optional[str] = Field(
        default=None, description="OpenAI-compatible endpoint, e.g. an OpenRouter gateway"
    )
    generation_model: str = Field(default="gpt-4o-mini")
    generation_temperature: float = Field(default=0.1)
    embedding_model: str = Field(default="text-embedding-3-large")
    embedding_dimensions: int = Field(default=3072)
    embedding_max_chars: int = Field(
        default=10_000, description="Longer input is truncated before embedding"
    )

    # Resilient client
    client_max_retries: int = Field(default=3, description="Retries after the first attempt")
    client_base_delay: float = Field(default=1.0, description="Backoff base in seconds")
    client_max_delay: float = Field(default=90.0, description="Backoff cap in seconds")
    client_request_timeout: float = Field(
        default=90.0, description="Overall time budget of one client call in seconds"
    )
    circuit_breaker_max: int = Field(
        default=5, description="Consecutive failures before calls short-circuit"
    )

    # Retrieval
    retrieval_top_k: int = Field(default=5)
    jobs_seed_path: Path = Field(default=Path("config/jobs.yaml"))

    # Evaluation workers
    worker_concurrency: int = Field(
        default=4, description="Maximum evaluations running at the same time"
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
