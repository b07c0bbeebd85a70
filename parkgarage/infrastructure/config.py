# File: parkgarage/infrastructure/config.py
"""
Configuration loading for the Parking Garage

Settings come from three layers, later ones winning:
1. Built-in defaults (40.00 per hour, 10 minutes grace, no broker)
2. A YAML file (--config or PARKGARAGE_CONFIG)
3. Environment overrides (PARKGARAGE_LOG_LEVEL, PARKGARAGE_BROKER,
   PARKGARAGE_BROKER_URL)

Example file:

    tariff:
      rate_per_hour: 40.00
      grace_minutes: 10
    spots:
      - {type: COMPACT, count: 2}
      - {type: REGULAR, count: 5}
    messaging:
      broker: redis
      url: redis://localhost:6379/0
    logging:
      level: INFO
      directory: logs
"""

from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
import os

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..domain.models import SpotType


ENV_CONFIG_PATH = "PARKGARAGE_CONFIG"
ENV_LOG_LEVEL = "PARKGARAGE_LOG_LEVEL"
ENV_BROKER = "PARKGARAGE_BROKER"
ENV_BROKER_URL = "PARKGARAGE_BROKER_URL"


class ConfigurationError(Exception):
    """Raised when configuration cannot be read or is invalid"""


# ============================================================================
# SETTINGS MODELS
# ============================================================================

class _Settings(BaseModel):
    model_config = ConfigDict(extra='forbid')


class TariffSettings(_Settings):
    rate_per_hour: Decimal = Field(default=Decimal('40.00'), ge=0)
    grace_minutes: int = Field(default=10, ge=0)


class SpotSettings(_Settings):
    type: str
    count: int = Field(gt=0)

    @field_validator('type')
    @classmethod
    def validate_type(cls, v: str) -> str:
        return SpotType.parse(v).name


class MessagingSettings(_Settings):
    broker: str = "none"
    url: Optional[str] = None
    topic: str = "parkgarage.events"

    @field_validator('broker')
    @classmethod
    def validate_broker(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("none", "memory", "redis", "rabbitmq"):
            raise ValueError(f"Unknown broker type: {v}")
        return v


class LoggingSettings(_Settings):
    level: str = "INFO"
    directory: Optional[str] = "logs"

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v


class GarageSettings(_Settings):
    """Complete garage configuration"""
    tariff: TariffSettings = Field(default_factory=TariffSettings)
    spots: List[SpotSettings] = Field(default_factory=list)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    max_id_attempts: int = Field(default=5, ge=1)
    seed_demo: bool = False


# ============================================================================
# LOADING
# ============================================================================

def _apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    if environ.get(ENV_LOG_LEVEL):
        data.setdefault('logging', {})['level'] = environ[ENV_LOG_LEVEL]
    if environ.get(ENV_BROKER):
        data.setdefault('messaging', {})['broker'] = environ[ENV_BROKER]
    if environ.get(ENV_BROKER_URL):
        data.setdefault('messaging', {})['url'] = environ[ENV_BROKER_URL]
    return data


def load_settings(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None
) -> GarageSettings:
    """
    Build settings from defaults, an optional YAML file and the environment
    Raises: ConfigurationError for unreadable files or invalid values
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get(ENV_CONFIG_PATH)

    data: Dict[str, Any] = {}
    if path:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        data = loaded or {}

    data = _apply_env_overrides(data, environ)

    try:
        return GarageSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
