"""
Configuration management and loading.

Handles detection thresholds, scoring weights, scheduler interval and the
default project settings that remediation constraints override.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class DatabaseConfig:
    path: str = "ai_incident_guard.db"

    def __post_init__(self):
        if not self.path or not str(self.path).strip():
            raise ValueError("database path cannot be empty")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None

    def __post_init__(self):
        if str(self.level).upper() not in LOG_LEVELS:
            raise ValueError(f"logging level must be one of: {sorted(LOG_LEVELS)}")


@dataclass(frozen=True)
class ScoringConfig:
    """Thresholds and weights of the additive risk score."""
    prompt_length_threshold: int = 5000
    response_length_threshold: int = 10000
    token_threshold: int = 4000
    prompt_length_points: int = 10
    response_length_points: int = 10
    keyword_points: int = 20
    keyword_cap: int = 40
    token_points: int = 15
    error_points: int = 25

    def __post_init__(self):
        """Validate scoring values are non-negative."""
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"{f.name} cannot be negative")


@dataclass(frozen=True)
class DetectionConfig:
    """Sample sizes and thresholds used by the anomaly detectors and the job."""
    sample_size: int = 100
    min_samples: int = 5
    sigma_threshold: float = 3.0
    error_rate_window: int = 50
    error_rate_delta: float = 0.1
    high_latency_ms: float = 10000.0
    high_risk_score: float = 80.0
    high_error_rate: float = 0.3

    def __post_init__(self):
        """Validate detection values."""
        if self.min_samples < 1:
            raise ValueError("min_samples must be >= 1")
        if self.sample_size < self.min_samples:
            raise ValueError("sample_size must be >= min_samples")
        if self.sigma_threshold <= 0:
            raise ValueError("sigma_threshold must be > 0")
        if self.error_rate_window < self.min_samples:
            raise ValueError("error_rate_window must be >= min_samples")
        if not 0 < self.error_rate_delta < 1:
            raise ValueError("error_rate_delta must be between 0 and 1")
        if not 0 < self.high_error_rate <= 1:
            raise ValueError("high_error_rate must be between 0 and 1")
        if self.high_latency_ms <= 0:
            raise ValueError("high_latency_ms must be > 0")
        if not 0 <= self.high_risk_score <= 100:
            raise ValueError("high_risk_score must be between 0 and 100")


@dataclass(frozen=True)
class SchedulerConfig:
    interval_seconds: float = 3600.0

    def __post_init__(self):
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")


@dataclass(frozen=True)
class SettingsDefaults:
    """Project settings in force when no remediation constraint applies."""
    preferred_model: str = "gpt-4"
    safety_threshold: int = 80
    rate_limit: int = 100
    system_prompt: Optional[str] = None

    def __post_init__(self):
        if not self.preferred_model or not self.preferred_model.strip():
            raise ValueError("preferred_model cannot be empty")
        if not 0 <= self.safety_threshold <= 100:
            raise ValueError("safety_threshold must be between 0 and 100")
        if self.rate_limit < 1:
            raise ValueError("rate_limit must be >= 1")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    settings_defaults: SettingsDefaults = field(default_factory=SettingsDefaults)

    @classmethod
    def default(cls) -> "AppConfig":
        return cls()


_SECTIONS = {
    "database": DatabaseConfig,
    "logging": LoggingConfig,
    "scoring": ScoringConfig,
    "detection": DetectionConfig,
    "scheduler": SchedulerConfig,
    "settings_defaults": SettingsDefaults,
}


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Strict validation ensures no silent misconfigurations: unknown keys are
    rejected and every value is type- and range-checked. Sections that are
    left out fall back to their defaults.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return AppConfig.default()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return AppConfig.default()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name, section_type in _SECTIONS.items():
        if name in raw_config:
            sections[name] = _parse_section(section_type, raw_config[name], name)

    return AppConfig(**sections)


def _parse_section(section_type: type, data: Any, path: str):
    """Parse and validate one configuration section.

    Args:
        section_type: Dataclass describing the section
        data: Raw section data
        path: Section name for error messages

    Returns:
        Validated section dataclass

    Raises:
        ValueError: If the section is invalid
    """
    if data is None:
        return section_type()
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    section_fields = {f.name: f for f in fields(section_type)}
    unknown_keys = set(data.keys()) - set(section_fields)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values: Dict[str, Any] = {}
    for key, value in data.items():
        default = section_fields[key].default
        values[key] = _coerce(value, default, f"{path}.{key}")

    return section_type(**values)


def _coerce(value: Any, default: Any, path: str) -> Any:
    """Check a raw value against the type of its default."""
    if value is None:
        if default is None:
            return None
        raise ValueError(f"'{path}' cannot be null")
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValueError(f"'{path}' must be a boolean")
        return value
    if isinstance(default, int) and not isinstance(default, bool):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{path}' must be an integer")
        return value
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{path}' must be a number")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")
    return value
