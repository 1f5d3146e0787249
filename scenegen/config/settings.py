"""Application settings using Pydantic."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineConfig(BaseModel):
    """Tuning knobs for the pipeline controller and its retry policy."""

    workers: int = Field(default=4, ge=1, description="Worker loops per controller instance")
    batch_size: int = Field(default=8, ge=1, description="Candidates fetched per poll")
    poll_interval: float = Field(default=1.0, gt=0, description="Idle wait after an empty poll")
    poll_max_interval: float = Field(default=30.0, gt=0, description="Cap for the idle backoff")

    lease_ttl: float = Field(default=60.0, gt=0, description="Lease time-to-live in seconds")
    renew_interval: float = Field(default=20.0, gt=0, description="Lease renewal period")
    stage_timeout: float = Field(default=600.0, gt=0, description="Deadline for one unit of stage work")
    max_units_per_claim: int = Field(
        default=0, ge=0, description="Committed units before the lease is handed back (0 = no limit)"
    )

    max_attempts: int = Field(default=5, ge=1, description="Consecutive failures before 'failed'")
    retry_base_delay: float = Field(default=2.0, ge=0)
    retry_max_delay: float = Field(default=300.0, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "PipelineConfig":
        if self.renew_interval >= self.lease_ttl / 2:
            raise ValueError("renew_interval must be less than half of lease_ttl")
        if self.poll_max_interval < self.poll_interval:
            raise ValueError("poll_max_interval must be >= poll_interval")
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SCENEGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Storage
    database_url: str = "sqlite:///./data/scenegen.db"
    upload_dir: str = "./data/uploads"

    # Lease backend
    lease_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379/0"

    # Chapter splitting (creation path)
    chunk_size: int = 2000
    chunk_overlap: int = 100
    chunk_separator: str = "\n\n"
    max_name_length: int = 50

    # Ollama LLM Configuration
    llm_ollama_base_url: str = "http://localhost:11434"
    llm_model_name: str = "qwen2.5:14b"
    llm_temperature: float = 0.0
    llm_request_timeout: int = 120
    llm_num_ctx: int = 16384
    llm_num_predict: int = 4096

    # Image / voice generation service
    media_base_url: str = "http://localhost:8600"
    media_api_key: str = ""
    media_request_timeout: float = 90.0
    media_image_style: str = "storybook illustration"
    media_voice: str = "narrator"

    # In-call retries of transient generation failures
    generation_max_retries: int = 3
    generation_retry_wait: float = 1.0

    # Pipeline
    pipeline_enabled: bool = False
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
