"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from datetime import date
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from trade_insight.core.exceptions import ConfigError
from trade_insight.core.models import DataProvider


class DataConfig(BaseModel):
    """Live-data and fallback switches.

    The defaults give synthetic data with zero configuration.
    """

    model_config = ConfigDict(frozen=True)

    live_enabled: bool = False
    fallback_enabled: bool = True
    stale_after_hours: int = 72
    latest_year: int | None = None
    history_years: int = 5

    @field_validator("stale_after_hours")
    @classmethod
    def stale_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("stale_after_hours must be >= 1")
        return v

    @field_validator("history_years")
    @classmethod
    def history_at_least_two(cls, v: int) -> int:
        if v < 2:
            raise ValueError("history_years must be >= 2 to compute growth")
        return v

    def resolved_latest_year(self) -> int:
        """Most recent year to request; providers publish with a lag."""
        if self.latest_year is not None:
            return self.latest_year
        return date.today().year - 1


class CacheConfig(BaseModel):
    """Local response cache configuration."""

    model_config = ConfigDict(frozen=True)

    default_ttl_seconds: int = 24 * 60 * 60
    max_size_bytes: int = 50 * 1024 * 1024
    snapshot_path: str | None = None

    @field_validator("default_ttl_seconds", "max_size_bytes")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


class HttpConfig(BaseModel):
    """Defaults shared by every provider client."""

    model_config = ConfigDict(frozen=True)

    timeout: float = 10.0
    max_retries: int = 3
    backoff_base: float = 1.0
    max_retry_after: float = 60.0
    max_concurrency: int = 5

    @field_validator("max_retries")
    @classmethod
    def retries_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        return v

    @field_validator("max_concurrency")
    @classmethod
    def concurrency_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrency must be >= 1")
        return v

    @field_validator("backoff_base", "max_retry_after")
    @classmethod
    def delay_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delays must be >= 0")
        return v


class WorldBankConfig(BaseModel):
    """World Bank indicators API (no credentials; ~120 requests/minute)."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.worldbank.org/v2"
    timeout: float | None = 15.0
    max_retries: int | None = None
    rate_limit: float = 2.0

    @field_validator("rate_limit")
    @classmethod
    def rate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("rate_limit must be > 0")
        return v


class ComtradeConfig(BaseModel):
    """UN Comtrade data API (subscription key required)."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://comtradeapi.un.org/data/v1"
    api_key: str | None = None
    timeout: float | None = 20.0
    max_retries: int | None = None
    rate_limit: float = 1.0

    @field_validator("rate_limit")
    @classmethod
    def rate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("rate_limit must be > 0")
        return v

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class ProvidersConfig(BaseModel):
    """Aggregated provider configuration."""

    model_config = ConfigDict(frozen=True)

    preferred: DataProvider = DataProvider.WORLD_BANK
    world_bank: WorldBankConfig = WorldBankConfig()
    comtrade: ComtradeConfig = ComtradeConfig()

    @model_validator(mode="after")
    def preferred_is_usable(self) -> ProvidersConfig:
        if self.preferred == DataProvider.SYNTHETIC:
            raise ValueError("preferred provider must be a live provider")
        if self.preferred == DataProvider.UN_COMTRADE and not self.comtrade.enabled:
            raise ValueError("comtrade.api_key is required when preferred is 'un_comtrade'")
        return self


class TradeInsightConfig(BaseModel):
    """Root configuration for trade-insight."""

    model_config = ConfigDict(frozen=True)

    data: DataConfig = DataConfig()
    cache: CacheConfig = CacheConfig()
    http: HttpConfig = HttpConfig()
    providers: ProvidersConfig = ProvidersConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "TRADE_INSIGHT_",
) -> TradeInsightConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (TRADE_INSIGHT_DATA__LIVE_ENABLED, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        TRADE_INSIGHT_PROVIDERS__COMTRADE__API_KEY=abc
            ->  providers.comtrade.api_key = "abc"
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return TradeInsightConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("TRADE_INSIGHT_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from TRADE_INSIGHT_CONFIG not found: {env_path}",
                context={"field": "TRADE_INSIGHT_CONFIG", "value": env_path},
            )
        return p

    default = Path("trade-insight.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            else:
                target[part] = dict(target[part])
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
