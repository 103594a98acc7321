"""Configuration management for the query layer."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreConfig(BaseModel):
    """Database identity configuration."""

    name: str = Field(default="idb_query", min_length=1, description="Database name")
    version: int = Field(default=1, ge=1, description="Schema version")
    schema_path: Path | None = Field(
        default=None, description="JSON schema file served by the REST entry point"
    )


class QueryConfig(BaseModel):
    """Query execution configuration."""

    key_names: list[str] = Field(
        default_factory=lambda: ["id", "key"],
        min_length=1,
        description="Field names recognized as the primary key, in resolution order",
    )
    post_filter_mode: Literal["all", "first"] = Field(
        default="all",
        description="'all' ANDs every filter pair; 'first' checks only the first pair",
    )


class EngineConfig(BaseModel):
    """Memory storage engine configuration."""

    btree_max_keys: int = Field(default=32, ge=3, description="Maximum keys per B+Tree node")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, ge=1, le=65535, description="Server port")
    metrics_port: int = Field(default=8001, ge=1, le=65535, description="Prometheus metrics port")


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="idb_query", description="Service name for tracing")


class Config(BaseSettings):
    """Main configuration for the query layer."""

    model_config = SettingsConfigDict(
        env_prefix="IDB_QUERY_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
