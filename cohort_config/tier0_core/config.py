"""
cohort_config.tier0_core.config
────────────────────────────────
Typed settings with env layering. Reads from .env → environment variables.
All fields are typed via Pydantic; invalid values fail at startup, not at
resolution time.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PendingPolicy = Literal["deny", "defer"]


class CohortSettings(BaseSettings):
    """
    Typed engine settings. A ConfigService reads these once at construction;
    pass an explicit instance to isolate services from the environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="cohort-config", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")

    # ── Resolution ────────────────────────────────────────────────────────────
    # Studio mode serves each key's test value ahead of control/treatment.
    studio_mode: bool = Field(default=False, alias="COHORT_STUDIO_MODE")
    # What a pending evaluator means when no persistence is configured:
    #   deny  → the key settles as ineligible
    #   defer → the whole pass stays pending and retries on the next trigger
    pending_policy: PendingPolicy = Field(default="deny", alias="COHORT_PENDING_POLICY")

    # ── Scheduling ────────────────────────────────────────────────────────────
    scheduler_backend: str = Field(default="asyncio", alias="COHORT_SCHEDULER_BACKEND")

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="COHORT_LOG_LEVEL")
    log_format: str = Field(default="json", alias="COHORT_LOG_FORMAT")

    # ── Error reporting ───────────────────────────────────────────────────────
    error_backend: str = Field(default="none", alias="COHORT_ERROR_BACKEND")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("scheduler_backend")
    @classmethod
    def validate_scheduler(cls, v: str) -> str:
        allowed = {"asyncio", "manual"}
        if v.lower() not in allowed:
            raise ValueError(f"scheduler_backend must be one of {allowed}, got {v!r}")
        return v.lower()

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


@lru_cache(maxsize=1)
def get_settings() -> CohortSettings:
    """
    Return the singleton settings. Cached after first call.
    Call _reset_settings() in tests to pick up new env vars.
    """
    return CohortSettings()


def _reset_settings() -> None:
    """For tests — clear the settings cache."""
    get_settings.cache_clear()


__all__ = ["CohortSettings", "PendingPolicy", "get_settings"]
