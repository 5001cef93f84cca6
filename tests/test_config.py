"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for gateway configs.
"""

import os
import tempfile

import pytest
import yaml

from issue_ai_guard.config.loader import (
    FeatureOverride,
    GatewayConfig,
    GeneratorConfig,
    QuotaPolicy,
    load_gateway_config,
)
from issue_ai_guard.core.features import Feature


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "quota": {
                "per_minute_limit": 5,
                "per_day_limit": 50,
                "min_input_length": 20,
            },
            "generator": {
                "model": "gpt-4o-mini",
                "timeout_seconds": 10,
            },
            "features": {
                "summary": {"temperature": 0.2, "max_tokens": 150},
                "comment_summary": {"max_tokens": 600},
            }
        }

        config = load_gateway_config(self._write_config(config_data))

        assert config.quota == QuotaPolicy(
            per_minute_limit=5,
            per_day_limit=50,
            min_input_length=20,
            min_items_for_digest=5
        )
        assert config.generator == GeneratorConfig(model="gpt-4o-mini", timeout_seconds=10.0)
        assert config.get_feature_override(Feature.SUMMARY) == FeatureOverride(
            temperature=0.2, max_tokens=150
        )
        assert config.get_feature_override(Feature.COMMENT_SUMMARY).temperature is None
        assert config.get_feature_override(Feature.SUGGESTION) == FeatureOverride()

    def test_minimal_config_uses_defaults(self):
        config = load_gateway_config(self._write_config({
            "quota": {"per_minute_limit": 10, "per_day_limit": 100}
        }))

        assert config == GatewayConfig()

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError, match="Gateway config file not found"):
            load_gateway_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_file(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("")

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_gateway_config(config_path)

    def test_invalid_yaml(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("quota: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_gateway_config(config_path)

    def test_non_dict_config(self):
        with pytest.raises(ValueError, match="must be a dictionary"):
            load_gateway_config(self._write_config(["quota"]))

    def test_unknown_top_level_key(self):
        """Test that unknown keys are rejected rather than ignored."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_gateway_config(self._write_config({
                "quota": {"per_minute_limit": 10, "per_day_limit": 100},
                "budget": {"daily": 5},
            }))

    def test_missing_quota_section(self):
        with pytest.raises(ValueError, match="Missing required 'quota' section"):
            load_gateway_config(self._write_config({"generator": {"model": "gpt-4"}}))

    def test_missing_quota_limit(self):
        with pytest.raises(ValueError, match="Missing required 'per_day_limit'"):
            load_gateway_config(self._write_config({"quota": {"per_minute_limit": 10}}))

    def test_non_positive_limit(self):
        with pytest.raises(ValueError, match="per_minute_limit must be > 0"):
            load_gateway_config(self._write_config({
                "quota": {"per_minute_limit": 0, "per_day_limit": 100}
            }))

    @pytest.mark.parametrize("value", [10.5, "10", True])
    def test_non_integer_limit(self, value):
        with pytest.raises(ValueError, match="must be an integer"):
            load_gateway_config(self._write_config({
                "quota": {"per_minute_limit": value, "per_day_limit": 100}
            }))

    def test_unknown_quota_key(self):
        with pytest.raises(ValueError, match="Unknown keys in quota"):
            load_gateway_config(self._write_config({
                "quota": {"per_minute_limit": 10, "per_day_limit": 100, "per_hour_limit": 50}
            }))

    def test_unknown_feature(self):
        with pytest.raises(ValueError, match="Unknown feature 'poem'"):
            load_gateway_config(self._write_config({
                "quota": {"per_minute_limit": 10, "per_day_limit": 100},
                "features": {"poem": {"temperature": 1.0}},
            }))

    def test_temperature_out_of_range(self):
        with pytest.raises(ValueError, match="between 0 and 2"):
            load_gateway_config(self._write_config({
                "quota": {"per_minute_limit": 10, "per_day_limit": 100},
                "features": {"summary": {"temperature": 3}},
            }))

    def test_non_positive_max_tokens(self):
        with pytest.raises(ValueError, match="'max_tokens' in features.suggestion must be > 0"):
            load_gateway_config(self._write_config({
                "quota": {"per_minute_limit": 10, "per_day_limit": 100},
                "features": {"suggestion": {"max_tokens": 0}},
            }))

    def test_empty_model(self):
        with pytest.raises(ValueError, match="model is required"):
            load_gateway_config(self._write_config({
                "quota": {"per_minute_limit": 10, "per_day_limit": 100},
                "generator": {"model": " "},
            }))


class TestConfigDataclasses:
    """Test dataclass-level validation."""

    def test_quota_policy_defaults(self):
        policy = QuotaPolicy()

        assert policy.per_minute_limit == 10
        assert policy.per_day_limit == 100
        assert policy.min_input_length == 10
        assert policy.min_items_for_digest == 5

    def test_negative_min_input_length(self):
        with pytest.raises(ValueError, match="min_input_length cannot be negative"):
            QuotaPolicy(min_input_length=-1)

    def test_generator_timeout(self):
        with pytest.raises(ValueError, match="timeout_seconds must be > 0"):
            GeneratorConfig(timeout_seconds=0)
