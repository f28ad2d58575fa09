"""Configuration management using Pydantic Settings."""

import json
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Elasticsearch
    elasticsearch_hosts: list[str] = Field(
        default=["http://localhost:9200"], description="Elasticsearch hosts"
    )
    elasticsearch_index: str = Field(default="searchsync", description="Default index name")
    elasticsearch_request_timeout: float = Field(
        default=10.0, description="Request timeout in seconds"
    )
    elasticsearch_refresh: str = Field(
        default="true", description="Refresh policy for writes: true, false or wait_for"
    )
    type_field: str = Field(
        default="doc_type", description="Source field holding the logical document type"
    )

    # Bulk indexing
    bulk_size: int = Field(default=100, description="Max operations per bulk request")
    bulk_timeout_ms: int = Field(default=1000, description="Max ms before a pending flush")
    bulk_buffer_size: int | None = Field(
        default=None, description="Max pending operations (unbounded when unset)"
    )

    hooks_use_bulk: bool = Field(
        default=False, description="Queue save hook writes on the bulk buffer"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=True, description="Render logs as JSON")

    @field_validator("elasticsearch_hosts", mode="before")
    @classmethod
    def parse_hosts(cls, v: str | list[str]) -> list[str]:
        """Parse hosts from environment variable.

        Supports comma-separated strings or JSON arrays.
        """
        if isinstance(v, str):
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("Elasticsearch hosts must be a list")
                return parsed
            return [host.strip() for host in v.split(",") if host.strip()]
        return v

    @field_validator("elasticsearch_refresh")
    @classmethod
    def validate_refresh(cls, v: str) -> str:
        if v not in ("true", "false", "wait_for"):
            raise ValueError(f"Refresh must be 'true', 'false' or 'wait_for', got '{v}'")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()
