# api/app/config.py
from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application configuration.

    Loads environment variables from `.env` and provides
    typed access across API, worker, and job handlers.
    """

    # ─────────────────────────────────────────────
    # Pydantic Settings Config
    # ─────────────────────────────────────────────
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────
    database_url: str
    database_url_sync: str | None = None

    # ─────────────────────────────────────────────
    # OpenAI
    # ─────────────────────────────────────────────
    openai_api_key: str
    openai_model: str = "gpt-4o-mini"
    openai_stt_model: str = "whisper-1"

    lesson_model: str = "gpt-4o"
    quiz_model: str = "gpt-4o"

    # ─────────────────────────────────────────────
    # API
    # ─────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_secret_key: str

    # ─────────────────────────────────────────────
    # Jobs
    # ─────────────────────────────────────────────
    job_max_attempts: int = 3
    job_retry_base_delay: float = 1.0
    job_retry_max_delay: float = 60.0

    # ─────────────────────────────────────────────
    # Worker
    # ─────────────────────────────────────────────
    worker_idle_base_delay: float = 2.0
    worker_idle_growth_factor: float = 1.5
    worker_idle_max_steps: int = 4
    worker_idle_max_delay: float = 10.0
    worker_post_job_delay: float = 0.1
    worker_error_delay: float = 5.0
    worker_job_types: list[str] | None = None

    # Reaper for jobs left in `processing` by a crashed worker.
    # Off unless set; pick a value longer than the slowest handler.
    worker_stale_after_seconds: float | None = None


# ─────────────────────────────────────────────
# Cached Settings Instance
# ─────────────────────────────────────────────
@lru_cache
def get_settings() -> Settings:
    """
    Returns a cached Settings instance so config
    is only loaded once per process.
    """
    return Settings()
