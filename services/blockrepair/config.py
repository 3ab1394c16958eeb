"""
Configuration management for blockrepair.

Non-secret configuration may come from a YAML file; everything can be set or
overridden through BLOCKREPAIR_* environment variables.
"""

import os
import re
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = "/etc/blockrepair/config.yaml"
DEFAULT_BLOCK_ID_PATTERN = r"^[0-9A-Za-z]{12,}/$"


class ConfigurationError(Exception):
    """Raised when settings are missing or invalid. Fatal for a run."""


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file.

    Raises ConfigurationError if the file cannot be read or parsed, or if its
    top level is not a mapping.
    """
    config_path = Path(os.environ.get("BLOCKREPAIR_CONFIG_FILE", DEFAULT_CONFIG_PATH))
    if not config_path.exists():
        return {}
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping, not {type(data).__name__}")
    return data


# Unprefixed names read by earlier deployments of this tool.
LEGACY_S3_ENV = {
    "BUCKET_NAME": "bucket",
    "S3_ENDPOINT": "endpoint_url",
    "S3_ACCESS_KEY": "access_key",
    "S3_SECRET_KEY": "secret_key",
    "S3_REGION": "region",
}


def legacy_env_settings_source() -> dict[str, Any]:
    """S3 settings from the unprefixed env names. BLOCKREPAIR_* names win."""
    s3 = {field: os.environ[name] for name, field in LEGACY_S3_ENV.items() if os.environ.get(name)}
    return {"storage": {"s3": s3}} if s3 else {}


# --- Storage Configuration Models ---


class StorageBackend(StrEnum):
    """Supported storage backends."""

    S3 = "s3"
    FILESYSTEM = "filesystem"


class S3Config(BaseModel):
    """S3 (or S3-compatible) bucket configuration."""

    bucket: str = Field(default="", description="Bucket holding the block store")
    endpoint_url: str = Field(default="", description="S3 endpoint URL (MinIO, Ceph, AWS)")
    access_key: str = Field(default="", description="Static access key")
    secret_key: str = Field(default="", description="Static secret key")
    region: str = Field(default="us-east-1", description="Bucket region")
    prefix: str = Field(default="", description="Key prefix within the bucket")
    path_style: bool = Field(
        default=True,
        description="Use path-style addressing; most self-hosted endpoints need it",
    )


class FilesystemConfig(BaseModel):
    """Local filesystem storage configuration, for development and CI."""

    root_dir: str = Field(
        default="/var/lib/blockrepair/storage",
        description="Root directory mirroring the bucket layout",
    )


class StorageConfig(BaseModel):
    """Storage configuration."""

    backend: StorageBackend = Field(
        default=StorageBackend.S3,
        description="Storage backend: s3 or filesystem",
    )
    s3: S3Config = Field(default_factory=S3Config)
    filesystem: FilesystemConfig = Field(default_factory=FilesystemConfig)

    @model_validator(mode="after")
    def _require_s3_settings(self) -> "StorageConfig":
        if self.backend != StorageBackend.S3:
            return self
        missing = [
            name
            for name in ("bucket", "endpoint_url", "access_key", "secret_key")
            if not getattr(self.s3, name)
        ]
        if missing:
            legacy = {field: name for name, field in LEGACY_S3_ENV.items()}
            env_names = ", ".join(
                f"BLOCKREPAIR_STORAGE__S3__{n.upper()} (or {legacy[n]})" for n in missing
            )
            raise ValueError(f"missing S3 settings: {env_names}")
        return self


# --- Run Configuration Models ---


class RunMode(StrEnum):
    """What to do with blocks whose header needs attention.

    synthesize: write a fresh header for blocks that have none.
    rotate: move existing headers to .old so the compactor rebuilds them.
    """

    SYNTHESIZE = "synthesize"
    ROTATE = "rotate"


class DiscoveryStrategy(StrEnum):
    """How block prefixes are found in the bucket."""

    WALK = "walk"
    FLAT = "flat"


class DiscoveryConfig(BaseModel):
    """Block discovery configuration."""

    strategy: DiscoveryStrategy = Field(default=DiscoveryStrategy.WALK)
    max_depth: int = Field(
        default=256,
        ge=1,
        description="Deepest directory level searched below the namespace prefix",
    )
    block_id_pattern: str = Field(
        default=DEFAULT_BLOCK_ID_PATTERN,
        description="Regex a final path segment (with trailing /) must match to be a block",
    )

    @field_validator("block_id_pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid block id pattern: {e}") from e
        return value


class RetryConfig(BaseModel):
    """Retry applied to each mutating storage call."""

    max_attempts: int = Field(default=3, ge=1)
    delay_seconds: float = Field(default=2.0, ge=0)


# --- Main Settings ---


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="BLOCKREPAIR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")

    storage: StorageConfig = Field(default_factory=StorageConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    namespace_prefix: str = Field(
        default="anonymous/",
        description="Top-level namespace scanned for blocks (e.g. a tenant root)",
    )
    mode: RunMode = Field(default=RunMode.SYNTHESIZE)
    concurrency: int = Field(default=10, ge=1, le=256, description="Blocks processed at once")
    dry_run: bool = Field(default=False, description="Inspect and report without writing")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            legacy_env_settings_source,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


def load_settings(**overrides: Any) -> Settings:
    """Build settings once at process start.

    Raises ConfigurationError with a readable message instead of the raw
    pydantic ValidationError.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(problems) from e
