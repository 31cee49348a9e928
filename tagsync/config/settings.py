"""
Configuration Management for Tag Sync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Retry budgets, tag limits and table names live next to the Supabase
credentials so every knob the sync layer reads is visible in one place.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseSettings(BaseSettings):
    """Supabase project configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        ...,
        description="Supabase project URL"
    )
    anon_key: str = Field(
        ...,
        description="Public anon key, used by identity-scoped connections"
    )
    service_role_key: Optional[str] = Field(
        default=None,
        description="Service role key for the elevated fallback connection"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Supabase URL must start with http:// or https://, got {v!r}")
        return v.rstrip("/")

    @property
    def has_elevated_access(self) -> bool:
        return bool(self.service_role_key)


class ExecutorSettings(BaseSettings):
    """Retry and backoff policy for remote calls."""

    model_config = SettingsConfigDict(
        env_prefix="EXECUTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first attempt"
    )
    initial_delay_ms: int = Field(
        default=500,
        ge=0,
        le=60000,
        description="Delay before the first retry; doubles on each retry"
    )
    # Tag lookups/creates/links run many calls per save, so they retry less
    tag_max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries for per-tag operations"
    )


class TagSettings(BaseSettings):
    """Tag normalization limits and table layout."""

    model_config = SettingsConfigDict(
        env_prefix="TAGS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    max_tags_per_record: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum number of unique tags kept from one tag string"
    )
    max_tag_length: int = Field(
        default=50,
        ge=1,
        le=255,
        description="Longer tag names are dropped"
    )

    # Table names within the database
    tags_table: str = Field(
        default="tags",
        description="Table holding tag rows"
    )
    links_table: str = Field(
        default="record_tags",
        description="Join table between records and tags"
    )
    link_record_column: str = Field(
        default="record_id",
        description="Column of the join table referencing the record"
    )
    owner_column: str = Field(
        default="owner_id",
        description="Column of the tags table referencing the owner"
    )
    records_table: str = Field(
        default="transactions",
        description="Table the record-save flow writes to"
    )


class AppSettings(BaseSettings):
    """
    Process-wide settings: environment, debug flag and log level.

    Read without a prefix (LOG_LEVEL, DEBUG_MODE, APP_ENVIRONMENT).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    One attribute per settings group.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily so the in-memory setup works
    # without Supabase credentials.

    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()

    @property
    def executor(self) -> ExecutorSettings:
        return ExecutorSettings()

    @property
    def tags(self) -> TagSettings:
        return TagSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Shared Settings instance.

    Loaded once per process.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict:
    """
    Try loading every settings group.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the groups that failed.
    Run at startup to surface a missing SUPABASE_URL before the first save.
    """
    results = {}

    settings = get_settings()

    for name in ("supabase", "executor", "tags", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
