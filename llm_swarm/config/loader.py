"""
Configuration management and loading.

Settings come from an optional YAML file, then environment variables
override individual values. The API key is only ever read from the
environment.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..core.pricing import ModelPricing

DEFAULT_BASE_URL = "https://api.minimax.io/v1"
DEFAULT_MODEL = "MiniMax-M2.5"

CONFIG_PATH_ENV = "LLM_SWARM_CONFIG"
USAGE_FILE_ENV = "LLM_SWARM_USAGE_FILE"

MAX_CONCURRENCY = 20


@dataclass(frozen=True)
class GatewayConfig:
    """Connection settings for the remote model."""
    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.3
    timeout_seconds: float = 120.0

    def __post_init__(self):
        """Validate gateway values."""
        if not self.base_url:
            raise ValueError("base_url cannot be empty")
        if not self.model:
            raise ValueError("model cannot be empty")
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class QuotaConfig:
    """Rolling window quota."""
    prompts_per_window: int = 1000
    window_hours: float = 5.0

    def __post_init__(self):
        """Validate quota values."""
        if self.prompts_per_window < 0:
            raise ValueError("prompts_per_window cannot be negative")
        if self.window_hours <= 0:
            raise ValueError("window_hours must be > 0")

    @property
    def window_duration(self) -> timedelta:
        return timedelta(hours=self.window_hours)


@dataclass(frozen=True)
class PricingConfig:
    """Fixed price pair in USD per million tokens."""
    input_per_million: float = 0.15
    output_per_million: float = 1.20

    def __post_init__(self):
        """Validate prices are non-negative."""
        if self.input_per_million < 0:
            raise ValueError("input_per_million cannot be negative")
        if self.output_per_million < 0:
            raise ValueError("output_per_million cannot be negative")

    def to_model_pricing(self) -> ModelPricing:
        return ModelPricing(
            input_per_million=Decimal(str(self.input_per_million)),
            output_per_million=Decimal(str(self.output_per_million))
        )


@dataclass(frozen=True)
class SwarmConfig:
    """Complete llm-swarm configuration."""
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    default_concurrency: int = 5
    ledger_path: Optional[str] = None

    def __post_init__(self):
        """Validate batch defaults."""
        if not 1 <= self.default_concurrency <= MAX_CONCURRENCY:
            raise ValueError(f"default_concurrency must be between 1 and {MAX_CONCURRENCY}")


_SECTION_KEYS = {
    "gateway": {"base_url", "model", "max_tokens", "temperature", "timeout_seconds"},
    "quota": {"prompts_per_window", "window_hours"},
    "pricing": {"input_per_million", "output_per_million"},
    "batch": {"concurrency"},
    "ledger": {"path"},
}


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None
) -> SwarmConfig:
    """Load and validate configuration.

    Args:
        path: Optional YAML file; falls back to $LLM_SWARM_CONFIG
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated SwarmConfig

    Raises:
        FileNotFoundError: If the config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    env = os.environ if environ is None else environ
    path = path or env.get(CONFIG_PATH_ENV)

    config = SwarmConfig()
    if path:
        config = _apply_file(config, _read_yaml(path), path)
    return _apply_env(config, env)


def _read_yaml(path: str) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration file must contain a mapping")
    return raw_config


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    data = raw_config.get(name, {})
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - _SECTION_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _number(data: Dict[str, Any], key: str, path: str, kind: type) -> Any:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    if kind is int and not float(value).is_integer():
        raise ValueError(f"'{key}' in {path} must be an integer")
    return kind(value)


def _apply_file(config: SwarmConfig, raw_config: Dict[str, Any], path: str) -> SwarmConfig:
    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    gateway_data = _section(raw_config, "gateway")
    gateway_kwargs: Dict[str, Any] = {}
    for key in ("base_url", "model"):
        if key in gateway_data:
            if not isinstance(gateway_data[key], str):
                raise ValueError(f"'{key}' in gateway must be a string")
            gateway_kwargs[key] = gateway_data[key]
    if "max_tokens" in gateway_data:
        gateway_kwargs["max_tokens"] = _number(gateway_data, "max_tokens", "gateway", int)
    for key in ("temperature", "timeout_seconds"):
        if key in gateway_data:
            gateway_kwargs[key] = _number(gateway_data, key, "gateway", float)

    quota_data = _section(raw_config, "quota")
    quota_kwargs: Dict[str, Any] = {}
    if "prompts_per_window" in quota_data:
        quota_kwargs["prompts_per_window"] = _number(quota_data, "prompts_per_window", "quota", int)
    if "window_hours" in quota_data:
        quota_kwargs["window_hours"] = _number(quota_data, "window_hours", "quota", float)

    pricing_data = _section(raw_config, "pricing")
    pricing_kwargs = {
        key: _number(pricing_data, key, "pricing", float) for key in pricing_data
    }

    batch_data = _section(raw_config, "batch")
    ledger_data = _section(raw_config, "ledger")

    top_kwargs: Dict[str, Any] = {}
    if "concurrency" in batch_data:
        top_kwargs["default_concurrency"] = _number(batch_data, "concurrency", "batch", int)
    if "path" in ledger_data:
        top_kwargs["ledger_path"] = str(Path(str(ledger_data["path"])).expanduser())

    return replace(
        config,
        gateway=replace(config.gateway, **gateway_kwargs),
        quota=replace(config.quota, **quota_kwargs),
        pricing=replace(config.pricing, **pricing_kwargs),
        **top_kwargs
    )


def _env_int(env: Mapping[str, str], name: str) -> int:
    try:
        return int(env[name])
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {env[name]!r}")


def _apply_env(config: SwarmConfig, env: Mapping[str, str]) -> SwarmConfig:
    gateway_kwargs: Dict[str, Any] = {"api_key": env.get("MINIMAX_API_KEY", "").strip()}
    if env.get("MINIMAX_BASE_URL"):
        gateway_kwargs["base_url"] = env["MINIMAX_BASE_URL"]
    if env.get("MINIMAX_MODEL"):
        gateway_kwargs["model"] = env["MINIMAX_MODEL"]
    if env.get("MINIMAX_MAX_TOKENS_DEFAULT"):
        gateway_kwargs["max_tokens"] = _env_int(env, "MINIMAX_MAX_TOKENS_DEFAULT")

    top_kwargs: Dict[str, Any] = {}
    if env.get("MINIMAX_MAX_CONCURRENCY"):
        top_kwargs["default_concurrency"] = _env_int(env, "MINIMAX_MAX_CONCURRENCY")
    if env.get(USAGE_FILE_ENV):
        top_kwargs["ledger_path"] = str(Path(env[USAGE_FILE_ENV]).expanduser())

    return replace(config, gateway=replace(config.gateway, **gateway_kwargs), **top_kwargs)
