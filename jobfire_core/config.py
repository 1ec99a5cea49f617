"""Configuration for the job scheduler.

Settings are read from environment variables prefixed with ``JOBFIRE_``
and from an optional ``.env`` file.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jobfire_core.storage.base import JobStore


class SchedulerSettings(BaseSettings):
    """Scheduler and storage settings."""

    model_config = SettingsConfigDict(
        env_prefix="JOBFIRE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Scheduler
    max_concurrent_jobs: int = Field(default=10, ge=1)
    debug: bool = False
    tick_interval_seconds: float = Field(default=1.0, gt=0)

    # Logging
    log_level: str = "INFO"
    log_format: str = "pretty"

    # Storage
    store_backend: str = Field(
        default="memory",
        description="Storage backend: memory, redis, mongo",
    )
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "job"
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_database: str = "jobfire"
    mongo_collection: str = "job_stats"

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        backend = v.lower()
        if backend not in ("memory", "redis", "mongo"):
            raise ValueError(f"Unsupported store backend: {v}")
        return backend

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in ("json", "pretty"):
            raise ValueError(f"Unsupported log format: {v}")
        return fmt

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log level: {v}")
        return level


@lru_cache()
def get_settings() -> SchedulerSettings:
    """Get cached settings instance."""
    return SchedulerSettings()


def create_store(settings: Optional[SchedulerSettings] = None) -> JobStore:
    """Build the job store selected by ``settings.store_backend``."""
    settings = settings or get_settings()

    if settings.store_backend == "redis":
        from jobfire_core.storage.redis_store import RedisJobStore

        return RedisJobStore.from_url(settings.redis_url, key_prefix=settings.redis_key_prefix)

    if settings.store_backend == "mongo":
        from jobfire_core.storage.mongo_store import MongoJobStore

        return MongoJobStore(
            uri=settings.mongo_uri,
            database=settings.mongo_database,
            collection=settings.mongo_collection,
        )

    from jobfire_core.storage.memory import InMemoryJobStore

    return InMemoryJobStore()
