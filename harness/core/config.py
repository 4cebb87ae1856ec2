"""Application configuration settings."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _find_env_file() -> str | None:
    """Find .env file in common locations.

    Checks (in order):
    1. .env (running from the project root)
    2. ../.env (running from a subdirectory such as tests/)
    3. None (rely on environment variables)
    """
    candidates = [
        Path(".env"),
        Path("../.env"),
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class Settings(BaseSettings):
    """Harness settings loaded from HARNESS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HARNESS_",
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "ci", "production"] = "development"
    log_level: str = "INFO"

    # Workspace cache
    cache_root: Path = Field(default=Path("repos"))
    registry_path: Path = Field(default=Path("registry/repos.json"))
    max_age_days: int = 7

    # Git transport
    git_binary: str = "git"
    git_timeout_seconds: float = 300.0
    clone_depth: int = 1

    # Batch warm-up
    warm_workers: int = 4

    # Celery
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"
    cache_gc_hour: int = 3  # UTC hour for the nightly eviction sweep

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject limits that would make the cache unusable.

        Non-positive timeouts, depths and worker counts are errors. A
        zero max_age_days is allowed (every entry older than "now" goes),
        a negative one is not.
        """
        errors: list[str] = []

        if self.git_timeout_seconds <= 0:
            errors.append("GIT_TIMEOUT_SECONDS must be positive")
        if self.clone_depth < 1:
            errors.append("CLONE_DEPTH must be at least 1")
        if self.warm_workers < 1:
            errors.append("WARM_WORKERS must be at least 1")
        if self.max_age_days < 0:
            errors.append("MAX_AGE_DAYS must not be negative")
        if not 0 <= self.cache_gc_hour <= 23:
            errors.append("CACHE_GC_HOUR must be between 0 and 23")

        if self.app_env == "production" and not self.cache_root.is_absolute():
            logger.warning(
                f"⚠️  CONFIG WARNING: cache_root '{self.cache_root}' is relative; "
                "entries will move with the working directory."
            )

        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)

        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
