"""
Configuration management and loading.

Handles quota limits, generator settings and per-feature overrides.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from issue_ai_guard.core.features import Feature


@dataclass(frozen=True)
class QuotaPolicy:
    """Fixed usage limits shared by all users."""
    per_minute_limit: int = 10
    per_day_limit: int = 100
    min_input_length: int = 10
    min_items_for_digest: int = 5

    def __post_init__(self):
        """Validate limits are positive."""
        if self.per_minute_limit <= 0:
            raise ValueError("per_minute_limit must be > 0")
        if self.per_day_limit <= 0:
            raise ValueError("per_day_limit must be > 0")
        if self.min_input_length < 0:
            raise ValueError("min_input_length cannot be negative")
        if self.min_items_for_digest < 1:
            raise ValueError("min_items_for_digest must be >= 1")


@dataclass(frozen=True)
class GeneratorConfig:
    """Settings for the external text generator."""
    model: str = "gpt-3.5-turbo"
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if not self.model or not self.model.strip():
            raise ValueError("model is required and cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class FeatureOverride:
    """Per-feature sampling overrides. None keeps the built-in value."""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class GatewayConfig:
    """Complete gateway configuration."""
    quota: QuotaPolicy = field(default_factory=QuotaPolicy)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    features: Dict[Feature, FeatureOverride] = field(default_factory=dict)

    def get_feature_override(self, feature: Feature) -> FeatureOverride:
        """Get overrides for a feature, empty if none configured."""
        return self.features.get(feature, FeatureOverride())


def load_gateway_config(path: str) -> GatewayConfig:
    """Load and validate gateway configuration from YAML file.

    Strict validation ensures no silent misconfiguration that would
    loosen quota limits.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GatewayConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Gateway config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'quota', 'generator', 'features'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'quota' not in raw_config:
        raise ValueError("Missing required 'quota' section")
    quota = _parse_quota(_section(raw_config, 'quota'))

    generator = GeneratorConfig()
    if 'generator' in raw_config:
        generator = _parse_generator(_section(raw_config, 'generator'))

    features = {}
    for feature_name, feature_data in _section(raw_config, 'features').items():
        try:
            feature = Feature(feature_name)
        except ValueError:
            valid = [f.value for f in Feature]
            raise ValueError(f"Unknown feature '{feature_name}', must be one of: {valid}")
        if not isinstance(feature_data, dict):
            raise ValueError(f"Feature '{feature_name}' must be a dictionary")
        features[feature] = _parse_feature_override(feature_data, f"features.{feature_name}")

    return GatewayConfig(quota=quota, generator=generator, features=features)


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _require_int(data: Dict[str, Any], key: str, path: str) -> int:
    value = data[key]
    # bool is an int subclass; "true" is not a limit
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _parse_quota(data: Dict[str, Any]) -> QuotaPolicy:
    """Parse and validate the quota section.

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'per_minute_limit', 'per_day_limit', 'min_input_length', 'min_items_for_digest'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in quota: {unknown_keys}")

    for key in ('per_minute_limit', 'per_day_limit'):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in quota")

    values = {key: _require_int(data, key, "quota") for key in data}
    return QuotaPolicy(**values)


def _parse_generator(data: Dict[str, Any]) -> GeneratorConfig:
    allowed_keys = {'model', 'timeout_seconds'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in generator: {unknown_keys}")

    defaults = GeneratorConfig()
    model = data.get('model', defaults.model)
    if not isinstance(model, str):
        raise ValueError("'model' in generator must be a string")

    timeout = data.get('timeout_seconds', defaults.timeout_seconds)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise ValueError("'timeout_seconds' in generator must be a number")

    return GeneratorConfig(model=model, timeout_seconds=float(timeout))


def _parse_feature_override(data: Dict[str, Any], path: str) -> FeatureOverride:
    """Parse and validate a per-feature override.

    Args:
        data: Feature configuration data
        path: Path for error messages

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'temperature', 'max_tokens'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    temperature = data.get('temperature')
    if temperature is not None:
        if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
            raise ValueError(f"'temperature' in {path} must be a number")
        if not 0 <= temperature <= 2:
            raise ValueError(f"'temperature' in {path} must be between 0 and 2")
        temperature = float(temperature)

    max_tokens = None
    if 'max_tokens' in data:
        max_tokens = _require_int(data, 'max_tokens', path)
        if max_tokens <= 0:
            raise ValueError(f"'max_tokens' in {path} must be > 0")

    return FeatureOverride(temperature=temperature, max_tokens=max_tokens)
