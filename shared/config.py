"""
Configuration management.

Centralized environment variable management and validation.
"""

from typing import Literal, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from shared.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # Allow case-insensitive env var matching
        extra="ignore"
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    # Empty string disables the rotating file handler
    log_file: str = "logs/app.log"

    # Provider credentials (checked when the provider is built, not at load time)
    replicate_api_token: Optional[str] = None
    kling_api_key: Optional[str] = None
    kling_base_url: str = "https://api.klingai.com"
    runway_api_key: Optional[str] = None
    runway_base_url: str = "https://api.dev.runwayml.com"
    runway_api_version: str = "2024-11-06"

    # PROVIDER_PROFILES_PATH: optional JSON file replacing the static provider table
    provider_profiles_path: Optional[str] = None

    # Retry defaults
    retry_max_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 30.0
    retry_jitter: bool = True

    # Batch scheduling
    batch_global_concurrency: int = 8
    # Finished batches kept for status queries, and terminal jobs kept for reuse
    batch_history_size: int = 50
    job_cache_size: int = 1000
    # Generation metrics kept in memory for provider stats
    metrics_max_records: int = 1000
    poll_interval_seconds: float = 5.0
    # Poll budget = max_duration * poll_seconds_per_output_second + margin
    poll_seconds_per_output_second: float = 30.0
    poll_timeout_margin_seconds: float = 120.0
    provider_request_timeout: float = 60.0

    # Composer
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    ffmpeg_threads: int = 4
    ffmpeg_preset: str = "medium"
    composition_work_dir: str = "/tmp/episode_renders"
    composition_output_dir: str = "renders"
    keep_intermediates: bool = False
    default_color_grade: str = "neutral"
    default_output_preset: str = "standard"

    # Episode assembly
    default_transition: str = "crossfade"
    default_transition_duration: float = 0.5
    scene_transition: str = "fade_black"
    scene_transition_duration: float = 1.0
    music_score_threshold: float = 0.5
    music_gain_db: float = -12.0
    dialogue_gain_db: float = 0.0
    # Replace the clip of a shot with dialogue by a lip-synced version
    lip_sync_enabled: bool = True

    # Audio collaborator
    audio_service_url: str = "http://localhost:8100"
    audio_service_api_key: Optional[str] = None

    # Episode document store
    episode_store_backend: Literal["memory", "supabase"] = "memory"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    @field_validator("replicate_api_token")
    @classmethod
    def validate_replicate_api_token(cls, v: Optional[str]) -> Optional[str]:
        """Validate Replicate API token format."""
        if not v:
            return None
        if not v.startswith("r8_"):
            raise ConfigError("REPLICATE_API_TOKEN must start with 'r8_'")
        if len(v) < 20:
            raise ConfigError("REPLICATE_API_TOKEN appears to be invalid")
        return v

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Supabase URL format."""
        if not v:
            return None
        if not v.startswith(("http://", "https://")):
            raise ConfigError("SUPABASE_URL must be a valid HTTP/HTTPS URL")
        return v

    @field_validator("audio_service_url", "kling_base_url", "runway_base_url")
    @classmethod
    def validate_service_url(cls, v: str) -> str:
        """Validate outbound service URLs and strip trailing slashes."""
        if not v.startswith(("http://", "https://")):
            raise ConfigError(f"Service URL must be HTTP/HTTPS: {v}")
        return v.rstrip("/")

    @field_validator(
        "retry_max_attempts", "batch_global_concurrency", "batch_history_size", "job_cache_size",
        "metrics_max_records", "ffmpeg_threads",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Counts must be at least 1."""
        if v < 1:
            raise ConfigError(f"Value must be >= 1, got {v}")
        return v

    @field_validator(
        "retry_base_delay",
        "retry_max_delay",
        "poll_interval_seconds",
        "poll_seconds_per_output_second",
        "poll_timeout_margin_seconds",
        "default_transition_duration",
        "scene_transition_duration",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Durations must be non-negative."""
        if v < 0:
            raise ConfigError(f"Value must be non-negative, got {v}")
        return v


# Singleton instance
try:
    settings = Settings()
except Exception as e:
    # Re-raise as ConfigError for consistency
    if isinstance(e, ConfigError):
        raise
    raise ConfigError(f"Failed to load configuration: {str(e)}") from e
