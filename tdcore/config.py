"""Application configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Live tournament core settings."""

    # App
    app_env: str = "development"
    log_level: str = "INFO"
    json_logs: bool = False

    # Clock
    tick_max_elapsed_seconds: float = Field(
        default=30.0,
        description="Upper bound applied to a single tick's elapsed time (polling gap guard)",
    )
    default_level_duration_seconds: int = Field(
        default=900,
        description="Level duration used when neither caller nor blind structure supplies one",
    )
    default_break_duration_seconds: int = Field(
        default=600,
        description="Break duration used when neither caller nor blind structure supplies one",
    )

    # Tables
    default_max_seats: int = Field(default=9, description="Seats per table (6 or 9 typical)")

    # Locking / persistence
    lock_backend: str = Field(
        default="local",
        description="Per-tournament lock backend: 'local' (asyncio) or 'redis'",
    )
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL (required for the redis lock backend)",
    )
    redis_key_prefix: str = "tdcore"
    redis_max_connections: int = 50
    redis_socket_timeout: float = 5.0
    lock_timeout_ms: int = Field(default=10000, description="Lock auto-expire time")
    lock_acquire_timeout_ms: int = Field(default=5000, description="Max wait for a lock")
    lock_retry_interval_ms: int = 50

    @field_validator(
        "tick_max_elapsed_seconds",
        "default_level_duration_seconds",
        "default_break_duration_seconds",
        "default_max_seats",
    )
    @classmethod
    def validate_positive(cls, v):
        """Durations and table sizes must be positive."""
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("lock_backend")
    @classmethod
    def validate_lock_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("local", "redis"):
            raise ValueError("lock_backend must be 'local' or 'redis'")
        return v

    @model_validator(mode="after")
    def validate_redis_settings(self) -> "Settings":
        """Redis lock backend requires a URL."""
        if self.lock_backend == "redis" and not self.redis_url:
            raise ValueError("redis_url is required when lock_backend is 'redis'")
        return self

    model_config = {
        "env_file": ".env",
        "env_prefix": "TD_",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
