"""
Configuration management for retention safes.

Safe settings come from environment variables (optionally via a .env file)
or from a YAML configuration file.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from layersafe.monitoring.safe_metrics import SafeMetrics
from layersafe.storage.retention_safe import RetentionSafe
from layersafe.storage.safe_errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs/layersafe.yaml")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SafeConfig(BaseModel):
    """Retention safe configuration."""
    directory: str
    days: int = Field(default=6, ge=0)
    months: int = Field(default=5, ge=0)
    years: int = Field(default=3, ge=0)
    name: Optional[str] = None
    log_level: str = "INFO"
    metrics_enabled: bool = True


def load_safe_config(config_path: Optional[Path] = None) -> SafeConfig:
    """Load safe configuration from .env file or environment variables, else YAML."""

    # Load .env file if it exists
    load_dotenv()

    directory = os.getenv("LAYERSAFE_DIR")
    if directory:
        return _build_config(
            directory=directory,
            days=_env_int("LAYERSAFE_DAYS", 6),
            months=_env_int("LAYERSAFE_MONTHS", 5),
            years=_env_int("LAYERSAFE_YEARS", 3),
            name=os.getenv("LAYERSAFE_NAME"),
            log_level=os.getenv("LAYERSAFE_LOG_LEVEL", "INFO"),
        )

    # Fall back to config file
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    return _parse_config(config_data)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None


def _build_config(**values) -> SafeConfig:
    level = str(values.get('log_level') or 'INFO').upper()
    if level not in LOG_LEVELS:
        raise ConfigurationError(f"unknown log level {values.get('log_level')!r}")
    values['log_level'] = level
    try:
        return SafeConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"invalid safe configuration: {e}") from e


def _parse_config(config_data: Dict[str, Any]) -> SafeConfig:
    safe = config_data.get('safe') or {}
    if not safe.get('directory'):
        raise ConfigurationError("configuration has no safe.directory entry")
    slots = safe.get('slots') or {}
    return _build_config(
        directory=safe["directory"],
        days=slots.get('days', 6),
        months=slots.get('months', 5),
        years=slots.get('years', 3),
        name=safe.get('name'),
        log_level=(config_data.get('logging') or {}).get('level', 'INFO'),
        metrics_enabled=(config_data.get('metrics') or {}).get('enabled', True),
    )


class SafeConfigManager:
    """Manages a YAML safe configuration file, writing defaults when absent."""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> SafeConfig:
        if self.config_path.exists():
            with open(self.config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
        else:
            logger.warning(f"Config file not found at {self.config_path}. Using defaults.")
            config_data = self._get_default_config()
            self._save_config(config_data)
        return _parse_config(config_data)

    def _get_default_config(self) -> Dict[str, Any]:
        return {
            'safe': {
                'directory': str(self.config_path.parent / 'safe'),
                'name': None,
                'slots': {
                    'days': 6,
                    'months': 5,
                    'years': 3,
                },
            },
            'logging': {
                'level': 'INFO',
            },
            'metrics': {
                'enabled': True,
            },
        }

    def _save_config(self, config_data: Dict[str, Any]):
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.dump(config_data, f, default_flow_style=False, indent=2)
        except OSError as e:
            logger.error(f"Failed to save config: {e}")


def create_retention_safe(config: SafeConfig) -> RetentionSafe:
    """Create a RetentionSafe from a configuration."""
    metrics = SafeMetrics(safe_label=config.name or Path(config.directory).name) \
        if config.metrics_enabled else None
    return RetentionSafe(
        config.directory,
        days=config.days,
        months=config.months,
        years=config.years,
        name=config.name,
        metrics=metrics,
    )
