"""Configuration management for the HMA relay.

Rules:
- YAML provides defaults for non-secret config.
- Secrets and per-deployment values (Fyers app id, log level, port) come from
  .env / environment variables and override YAML.
- Broker access tokens are never part of the config: they arrive per request.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _check_environment(v: str) -> str:
    if str(v).upper() not in {"DEV", "PROD"}:
        raise ValueError("Environment must be 'DEV' or 'PROD'")
    return str(v).upper()


def _check_log_level(v: str) -> str:
    valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if str(v).upper() not in valid:
        raise ValueError(f"Log level must be one of: {sorted(valid)}")
    return str(v).upper()


class FyersConfig(BaseModel):
    """Fyers API v3 configuration."""

    app_id: str = Field(
        default="",
        description="Fyers application id (e.g. XXXXXX-100), prefixed to bare access tokens",
    )
    api_base_url: str = Field(
        default="https://api-t1.fyers.in",
        description="Base URL for the data endpoints",
    )
    request_timeout_sec: float = Field(default=10.0, gt=0, le=120)

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, v: str) -> str:
        v = str(v).strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_base_url must start with http:// or https://")
        return v.rstrip("/")


class MarketConfig(BaseModel):
    """Exchange clock and history window used by the HMA pipeline."""

    exchange_utc_offset_minutes: int = Field(default=330, ge=-720, le=840)
    history_lookback_days: int = Field(default=2, ge=1, le=30)


class APIConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, ge=1024, le=65535)
    cors_origins: List[str] = Field(default=["http://localhost:3000", "http://localhost:3001"])


class RelayConfig(BaseSettings):
    """Main configuration class for the relay.

    YAML is parsed as base config, then env overrides are re-applied on top.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = Field(default="DEV")
    log_level: str = Field(default="INFO")

    fyers: FyersConfig = Field(default_factory=FyersConfig)
    market: MarketConfig = Field(default_factory=MarketConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        return _check_environment(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return _check_log_level(v)

    @property
    def json_logs(self) -> bool:
        return self.environment == "PROD"

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "RelayConfig":
        """Load configuration from YAML, then apply env overrides."""
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        try:
            base = cls.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Configuration validation error: {e}")

        return apply_env_overrides(base)


def apply_env_overrides(base: RelayConfig) -> RelayConfig:
    """Re-apply the env vars that must win over YAML."""
    if os.getenv("FYERS__APP_ID"):
        base.fyers.app_id = os.getenv("FYERS__APP_ID", base.fyers.app_id)

    if os.getenv("ENVIRONMENT"):
        base.environment = _check_environment(os.getenv("ENVIRONMENT", base.environment))

    if os.getenv("LOG_LEVEL"):
        base.log_level = _check_log_level(os.getenv("LOG_LEVEL", base.log_level))

    port = os.getenv("PORT")
    if port and port.isdigit():
        base.api.port = int(port)

    return base


def load_config(config_path: Optional[Path] = None) -> RelayConfig:
    """Load configuration from YAML + .env (env wins).

    Without a YAML file the relay still starts on built-in defaults.
    """
    load_dotenv(dotenv_path=Path(".env"))

    if config_path is None:
        possible_paths = [Path("config/default.yaml"), Path("config/config.yaml"), Path("config.yaml")]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            return apply_env_overrides(RelayConfig())

    return RelayConfig.from_yaml(config_path)


# Global config instance
_config: Optional[RelayConfig] = None


def get_config() -> RelayConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Optional[Path] = None) -> RelayConfig:
    global _config
    _config = load_config(config_path)
    return _config
