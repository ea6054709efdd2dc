# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Cache TTL classes and provider timeouts live here so ops can tune
# staleness windows without a deploy.

import json
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
        extra="ignore",
    )

    # Core DB connection string, like sqlite:///./permissions.db or a Postgres URL.
    DATABASE_URL: str = "sqlite:///./permissions.db"

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    # Cache backend: "memory", "redis" or "none". Redis needs REDIS_URL.
    CACHE_BACKEND: str = "memory"
    REDIS_URL: Optional[str] = None
    CACHE_NAMESPACE: str = "perm"
    CACHE_DEFAULT_TTL_SECONDS: int = Field(default=300, ge=0)

    # Simulates an unavailable cache store; resolution must keep working.
    CHAOS_CACHE_DOWN: bool = False

    # TTL classes (seconds). Resolved maps and overrides change often,
    # plan/role data rarely, the feature catalog almost never.
    PERMISSION_CACHE_TTL_SECONDS: int = Field(default=300, gt=0)
    USAGE_CACHE_TTL_SECONDS: int = Field(default=300, gt=0)
    USER_ROLES_CACHE_TTL_SECONDS: int = Field(default=1800, gt=0)
    PLAN_ROLE_CACHE_TTL_SECONDS: int = Field(default=3600, gt=0)
    FEATURE_CACHE_TTL_SECONDS: int = Field(default=86400, gt=0)

    # Each provider call in the context fan-out is bounded by this timeout.
    PROVIDER_TIMEOUT_SECONDS: float = Field(default=2.0, gt=0)
    CONTEXT_MAX_WORKERS: int = Field(default=8, gt=0)

    # When false, org override writes only drop the org override list and
    # members see stale maps for at most one permission TTL.
    ORG_OVERRIDE_FANOUT: bool = True

    # Logging: level name and "json" or "text" output.
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @field_validator("CACHE_BACKEND", "LOG_FORMAT", mode="before")
    @classmethod
    def _normalize_choice(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_level(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value


# Instantiate a single settings object for app-wide import.
# Any module can just `from permission_engine.core.config import settings`.
settings = Settings()
