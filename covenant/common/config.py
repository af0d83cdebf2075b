from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


SchemaDraft = Literal["2020-12", "2019-09", "7", "6", "4"]


class Settings(BaseSettings):
    """
    Runtime configuration (env prefix `COVENANT_`, optional `.env`).

    Notes:
    - Schema defaults here only apply when callers do not pass explicit
      `SchemaOptions` / `NegotiationPolicy` objects.
    - Settings are read once per process; call `get_settings.cache_clear()`
      after changing the environment (tests do this).
    """

    model_config = SettingsConfigDict(
        env_prefix="COVENANT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging identity
    SERVICE_NAME: str = "covenant"
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    # Schema compilation defaults
    SCHEMA_DRAFT: SchemaDraft = "2020-12"
    ALL_ERRORS: bool = True
    FORMAT_CHECK: bool = False
    # Upper bound on error records kept per failed validation (0 = unbounded).
    MAX_ERRORS: int = Field(default=0, ge=0)

    # Caches
    VALIDATOR_CACHE_SIZE: int = Field(default=128, ge=1)
    FILE_CACHE_ENABLED: bool = True
    FILE_CACHE_SIZE: int = Field(default=256, ge=1)

    # Negotiation policy
    REQUIRE_GUARANTEED_FIELDS: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
