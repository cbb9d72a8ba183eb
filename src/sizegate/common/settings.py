"""Application configuration for the size gate."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field, HttpUrl, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MEBIBYTE = 1024 * 1024


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class ConfigurationInvalid(RuntimeError):
    """Raised when the gateway cannot start because its configuration is unusable."""


class GatewaySettings(BaseSettings):
    """Runtime settings for the admission gateway."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    max_size_mb: int = env_field(..., "SIZEGATE_MAX_SIZE_MB")
    backend_url: HttpUrl = env_field(..., "SIZEGATE_BACKEND_URL")
    listen_host: str = env_field("0.0.0.0", "SIZEGATE_LISTEN_HOST")
    listen_port: int = env_field(8080, "SIZEGATE_LISTEN_PORT")
    ipfs_api_url: HttpUrl = env_field("http://127.0.0.1:5001", "SIZEGATE_IPFS_API_URL")
    ipfs_timeout_seconds: float = env_field(10.0, "SIZEGATE_IPFS_TIMEOUT")
    upstream_timeout_seconds: float = env_field(60.0, "SIZEGATE_UPSTREAM_TIMEOUT")
    cache_capacity: int = env_field(10_000, "SIZEGATE_CACHE_CAPACITY")
    traversal_timeout_seconds: float = env_field(30.0, "SIZEGATE_TRAVERSAL_TIMEOUT")
    lookup_error_policy: Literal["fail", "skip"] = env_field("fail", "SIZEGATE_LOOKUP_ERROR_POLICY")
    coalesce_traversals: bool = env_field(True, "SIZEGATE_COALESCE_TRAVERSALS")
    pinned_type: Literal["recursive", "direct", "indirect", "all"] = env_field("recursive", "SIZEGATE_PINNED_TYPE")
    metrics_token: Optional[SecretStr] = env_field(None, "SIZEGATE_METRICS_TOKEN")
    log_level: str = env_field("INFO", "SIZEGATE_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "SIZEGATE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "SIZEGATE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "SIZEGATE_OTEL_SAMPLER_RATIO")

    @field_validator("max_size_mb", "cache_capacity")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("traversal_timeout_seconds", "ipfs_timeout_seconds", "upstream_timeout_seconds")
    @classmethod
    def _require_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def quota_bytes(self) -> int:
        return self.max_size_mb * MEBIBYTE

    @property
    def traversal_deadline(self) -> Optional[float]:
        return self.traversal_timeout_seconds or None


def load_settings(**overrides) -> GatewaySettings:
    try:
        return GatewaySettings(**overrides)
    except ValidationError as exc:
        raise ConfigurationInvalid(str(exc)) from exc
