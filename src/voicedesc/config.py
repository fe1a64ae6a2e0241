"""Configuration management for voicedesc."""

import logging
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

MB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"

    # Directories
    storage_dir: Path = Path("./storage")
    work_dir: Path = Path("./temp")

    # Pipeline selection
    default_pipeline: str = "cloud-vision"
    llm_max_file_size_mb: int = 25
    llm_max_duration_seconds: int = 180
    llm_small_file_mb: int = 10
    llm_short_duration_seconds: int = 60
    hybrid_min_file_mb: int = 20
    hybrid_max_file_mb: int = 100
    hybrid_min_duration_seconds: int = 60
    hybrid_max_duration_seconds: int = 300
    cloud_max_file_size_mb: int = 500
    cloud_max_duration_seconds: int = 3600

    # Rate limits reported in pipeline limits
    llm_requests_per_minute: int = 50
    llm_tokens_per_minute: int = 40000
    cloud_requests_per_minute: int = 100
    cloud_concurrent_jobs: int = 10

    # Response cache
    cache_max_entries: int = 500
    cache_max_bytes: int = 500 * MB
    cache_ttl_seconds: float = 24 * 60 * 60
    cache_persist_min_tokens: int = 500
    cache_persist_ttl_seconds: int = 7 * 24 * 60 * 60
    cache_semantic_enabled: bool = False
    cache_semantic_threshold: float = 0.95
    cache_semantic_min_prompt_chars: int = 50
    cache_semantic_max_entries: int = 10000
    redis_url: str | None = None

    # Cost optimization
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 1024
    prompt_compression: str | None = None
    allow_model_downgrade: bool = False
    llm_budget_usd: float | None = None
    token_ledger_size: int = 1000
    cloud_cost_per_segment: float = 0.1
    cloud_cost_per_analysis: float = 0.05
    cloud_cost_per_synthesis: float = 0.02

    # Execution
    max_concurrent_jobs: int = 2
    max_concurrent_analyses: int = 3
    external_call_timeout_seconds: float = 300.0
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 10.0

    # Chunking
    chunk_max_duration_seconds: float = 30.0
    chunk_min_duration_seconds: float = 10.0
    chunk_overlap_seconds: float = 2.0

    # Job housekeeping
    health_active_job_threshold: int = 10
    job_max_age_hours: float = 24.0

    # Token-metered backend
    anthropic_api_key: str | None = None

    @property
    def llm_max_file_size_bytes(self) -> int:
        return self.llm_max_file_size_mb * MB

    @property
    def cloud_max_file_size_bytes(self) -> int:
        return self.cloud_max_file_size_mb * MB

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.work_dir.mkdir(parents=True, exist_ok=True)


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the service process."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return settings
