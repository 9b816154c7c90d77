from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "CRM Record Cache"
    app_version: str = "0.1.0"

    cache_max_entries: int = Field(default=1000, ge=1)
    cache_default_ttl_seconds: float = Field(default=300.0, ge=0)
    cache_sweep_interval_seconds: float | None = Field(default=300.0, gt=0)

    contact_cache_ttl_seconds: float = Field(default=300.0, ge=0)
    contact_list_cache_ttl_seconds: float = Field(default=60.0, ge=0)
    analysis_cache_ttl_seconds: float = Field(default=3600.0, ge=0)
    file_cache_ttl_seconds: float = Field(default=600.0, ge=0)

    records_api_base: str | None = None
    records_api_key: str | None = None
    records_timeout_seconds: float = 15.0
    records_retry_attempts: int = 2
    records_backoff_base_seconds: float = 0.5


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
