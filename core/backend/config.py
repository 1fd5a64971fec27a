"""
Configuration settings.
Supports .env file and environment variables.
"""

import logging
from enum import Enum
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchMode(str, Enum):
    SYNC = "sync"
    ASYNC = "async"
    QUEUE = "queue"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8765
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]  # JSON list in the environment

    # Dispatch
    dispatch_mode: DispatchMode = DispatchMode.ASYNC
    max_dispatch_seconds: float = 300.0  # platform execution ceiling for sync mode

    # Groq (primary)
    groq_api_key: Optional[str] = None
    groq_transcription_model: str = "whisper-large-v3"
    groq_chat_model: str = "llama-3.3-70b-versatile"
    groq_max_upload_mb: float = 25.0

    # Google Gemini (fallback)
    google_ai_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_max_upload_mb: float = 50.0

    # Transcription hints
    transcription_language: Optional[str] = None
    transcription_prompt: Optional[str] = None
    ai_timeout_seconds: float = 120.0

    # Render worker
    python_worker_url: str = "http://localhost:8000"
    render_timeout_seconds: float = 280.0
    async_dispatch_timeout_seconds: float = 5.0
    forward_provider_keys: bool = True

    # Supabase
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    jobs_table: str = "jobs"
    raw_videos_bucket: str = "raw-videos"
    processed_videos_bucket: str = "processed-videos"
    signed_url_ttl_seconds: int = 3600
    max_upload_mb: float = 50.0

    # Queue (Celery + Redis)
    redis_url: Optional[str] = None
    queue_name: str = "video-processing"
    queue_max_attempts: int = 3
    queue_backoff_seconds: float = 2.0
    queue_concurrency: int = 5
    queue_rate_limit: str = "10/m"
    queue_completed_retention_seconds: int = 24 * 3600
    queue_failed_retention_seconds: int = 7 * 24 * 3600
    queue_cleanup_interval_seconds: int = 3600

    # Security
    api_secret: Optional[str] = None  # If set, requires X-API-KEY header

    def get_available_services(self) -> set[str]:
        """AI providers with credentials configured."""
        services = set()
        if self.groq_api_key:
            services.add("groq")
        if self.google_ai_api_key:
            services.add("gemini")
        return services

    def queue_enabled(self) -> bool:
        return bool(self.redis_url)

    def get_effective_dispatch_mode(self) -> DispatchMode:
        """
        Determine effective dispatch mode.
        QUEUE needs a Redis connection; without one it degrades to ASYNC.
        """
        if self.dispatch_mode == DispatchMode.QUEUE and not self.queue_enabled():
            logging.getLogger(__name__).warning(
                "⚠️ DISPATCH_MODE=queue but REDIS_URL is not set, falling back to async"
            )
            return DispatchMode.ASYNC
        return self.dispatch_mode


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the API and the queue worker."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


settings = Settings()
