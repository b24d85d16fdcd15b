"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for the YAML configuration.
"""

import logging
import os
import shutil
import tempfile

import pytest
import yaml

from ai_incident_guard.config.loader import (
    AppConfig,
    DetectionConfig,
    ScoringConfig,
    SettingsDefaults,
    load_config,
)
from ai_incident_guard.config.logger import setup_logger


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_no_path_returns_defaults(self):
        assert load_config() == AppConfig.default()

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        path = self._write_config({
            "database": {"path": "/tmp/guard.db"},
            "detection": {"sample_size": 200, "sigma_threshold": 2.5, "high_latency_ms": 8000},
            "scheduler": {"interval_seconds": 600},
            "settings_defaults": {"preferred_model": "gpt-4-turbo", "system_prompt": "Be safe."},
        })

        config = load_config(path)

        assert config.database.path == "/tmp/guard.db"
        assert config.detection.sample_size == 200
        assert config.detection.sigma_threshold == 2.5
        assert config.detection.high_latency_ms == 8000.0
        assert config.detection.min_samples == 5
        assert config.scheduler.interval_seconds == 600.0
        assert config.settings_defaults.preferred_model == "gpt-4-turbo"
        assert config.settings_defaults.system_prompt == "Be safe."
        assert config.scoring == ScoringConfig()

    def test_empty_file_returns_defaults(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, "w").close()
        assert load_config(path) == AppConfig.default()

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml(self):
        path = os.path.join(self.temp_dir, "bad.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("detection: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_config(path)

    def test_unknown_top_level_key(self):
        path = self._write_config({"budget": {"daily": 10}})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config(path)

    def test_unknown_section_key(self):
        path = self._write_config({"detection": {"sigma": 3}})
        with pytest.raises(ValueError, match="Unknown keys in detection"):
            load_config(path)

    def test_wrong_type(self):
        path = self._write_config({"scoring": {"keyword_points": "twenty"}})
        with pytest.raises(ValueError, match="scoring.keyword_points"):
            load_config(path)

    def test_bool_is_not_an_integer(self):
        path = self._write_config({"settings_defaults": {"rate_limit": True}})
        with pytest.raises(ValueError, match="must be an integer"):
            load_config(path)

    def test_range_checked(self):
        path = self._write_config({"settings_defaults": {"safety_threshold": 150}})
        with pytest.raises(ValueError, match="safety_threshold"):
            load_config(path)


class TestSectionValidation:
    """Test __post_init__ range checks."""

    def test_detection_sample_size_below_min_samples(self):
        with pytest.raises(ValueError, match="sample_size"):
            DetectionConfig(sample_size=3, min_samples=5)

    def test_detection_delta_range(self):
        with pytest.raises(ValueError, match="error_rate_delta"):
            DetectionConfig(error_rate_delta=1.5)

    def test_negative_scoring_weight(self):
        with pytest.raises(ValueError, match="keyword_cap"):
            ScoringConfig(keyword_cap=-1)

    def test_empty_preferred_model(self):
        with pytest.raises(ValueError):
            SettingsDefaults(preferred_model=" ")


class TestLogger:
    """Test logger setup."""

    def test_setup_does_not_duplicate_handlers(self):
        name = "ai_incident_guard.test_logger"
        logger = setup_logger(name, "DEBUG")
        setup_logger(name, "DEBUG")

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_file_handler(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = os.path.join(temp_dir, "guard.log")
            logger = setup_logger("ai_incident_guard.test_file_logger", "INFO", log_file)
            logger.info("incident opened")
            for handler in logger.handlers:
                handler.flush()
                handler.close()
            logger.handlers.clear()

            with open(log_file, encoding="utf-8") as f:
                assert "[INFO] ai_incident_guard.test_file_logger: incident opened" in f.read()
