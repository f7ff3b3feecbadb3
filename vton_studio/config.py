"""Configuration management for the virtual try-on studio."""

import logging
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class FalConfig(BaseModel):
    """Hosted image model settings."""
    text_to_image_model: str = "fal-ai/nano-banana"
    edit_model: str = "fal-ai/nano-banana/edit"
    output_format: str = "png"
    client_timeout: float | None = None  # None = fal-client default


class RetryConfig(BaseModel):
    """Retry policy for provider calls."""
    max_attempts: int = 3
    delay_seconds: float = 1.0


class QuotaConfig(BaseModel):
    """Daily per-client generation quota."""
    daily_limit: int = 2
    key_prefix: str = "ratelimit"
    exempt_referer_hosts: list[str] = Field(default_factory=list)
    dev_mode: bool = False  # True = nobody is limited


class PreprocessConfig(BaseModel):
    """Upload normalization settings."""
    max_edge: int = 1280
    jpeg_quality: int = 75
    heic_quality: int = 90


class OrchestratorConfig(BaseModel):
    """Multi-job generation settings."""
    progress_interval: float = 0.1  # seconds between progress ticks
    stagger_delay: float = 0.5  # seconds between dispatches within a batch
    preload_results: bool = True


class StudioConfig(BaseSettings):
    """Main studio configuration."""

    # Paths / endpoints
    output_dir: Path = Path("output/batches")
    server_url: str = "http://127.0.0.1:8000"
    proxy_allowed_hosts: list[str] = Field(default_factory=lambda: ["fal.media"])
    log_level: str = "INFO"

    # Sub-configs
    fal: FalConfig = Field(default_factory=FalConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    preprocess: PreprocessConfig = Field(default_factory=PreprocessConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)

    # Secrets (loaded from .env)
    fal_key: str | None = None
    upstash_redis_rest_url: str | None = None
    upstash_redis_rest_token: str | None = None

    class Config:
        env_file = ".env"
        env_prefix = ""
        env_nested_delimiter = "__"
        extra = "ignore"


def load_config() -> StudioConfig:
    """Load configuration from environment and defaults."""
    return StudioConfig()


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging for the server and the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
