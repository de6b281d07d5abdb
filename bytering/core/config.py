"""
Configuration Manager - Loads and validates library configuration.

Merges YAML config with environment variables. Environment variables take
precedence over YAML values for deployment flexibility.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from bytering.core.logger import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = "config/config.yaml"


# ---------------------------------------------------------------------------
# Pydantic Configuration Models
# ---------------------------------------------------------------------------

class AppConfig(BaseModel):
    name: str = "bytering"
    version: str = "1.0.0"


class RingConfig(BaseModel):
    default_capacity: int = 4096
    strict_checks: bool = True
    memory_budget_bytes: Optional[int] = None

    @field_validator("default_capacity")
    @classmethod
    def validate_capacity(cls, v):
        if v < 1:
            raise ValueError("default_capacity must be at least 1")
        return v

    @field_validator("memory_budget_bytes")
    @classmethod
    def validate_budget(cls, v):
        if v is not None and v <= 0:
            raise ValueError("memory_budget_bytes must be positive")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "logs"
    json_output: bool = False


class ByteringConfig(BaseModel):
    """Master configuration model with full validation."""
    app: AppConfig = Field(default_factory=AppConfig)
    ring: RingConfig = Field(default_factory=RingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("true", "1", "yes", "on"):
        return True
    if lowered in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {raw}")


# ---------------------------------------------------------------------------
# Configuration Manager (Singleton)
# ---------------------------------------------------------------------------

class ConfigManager:
    """
    Configuration manager.

    Loads configuration from a YAML file, then overlays environment
    variables. Validates all values through Pydantic models.
    """

    _instance: Optional[ConfigManager] = None
    _config: Optional[ByteringConfig] = None

    def __new__(cls) -> ConfigManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self.load()

    def load(self, config_path: str = DEFAULT_CONFIG_PATH) -> ByteringConfig:
        """Load configuration from YAML + environment variables."""
        load_dotenv()

        yaml_config: Dict[str, Any] = {}
        config_file = Path(config_path)
        if config_file.exists():
            with open(config_file, "r") as f:
                yaml_config = yaml.safe_load(f) or {}

        self._apply_env_overrides(yaml_config)

        # Stored on the class so every ConfigManager() sees the same config
        type(self)._config = ByteringConfig(**yaml_config)

        from bytering.core.allocator import reset_default_allocator

        reset_default_allocator()
        return self._config

    def _apply_env_overrides(self, config: Dict[str, Any]) -> None:
        """Override YAML values with environment variables where set."""
        env_mappings = {
            "RING_DEFAULT_CAPACITY": ("ring", "default_capacity", int),
            "RING_STRICT_CHECKS": ("ring", "strict_checks", _parse_bool),
            "RING_MEMORY_BUDGET_BYTES": ("ring", "memory_budget_bytes", int),
            "LOG_LEVEL": ("logging", "level"),
            "LOG_DIR": ("logging", "log_dir"),
            "LOG_JSON": ("logging", "json_output", _parse_bool),
        }

        for env_key, mapping in env_mappings.items():
            value = os.getenv(env_key)
            if value is not None:
                section = mapping[0]
                key = mapping[1]
                converter = mapping[2] if len(mapping) > 2 else str

                if section not in config or config[section] is None:
                    config[section] = {}
                try:
                    config[section][key] = converter(value)
                except (ValueError, TypeError):
                    logger.warning(
                        "Ignoring unparseable environment override",
                        env_key=env_key,
                        value=value,
                    )

    @property
    def config(self) -> ByteringConfig:
        """Get the current validated configuration."""
        if self._config is None:
            self.load()
        return self._config

    def reload(self, config_path: str = DEFAULT_CONFIG_PATH) -> ByteringConfig:
        """Reload configuration from disk."""
        return self.load(config_path)

    def get(self, dotpath: str, default: Any = None) -> Any:
        """
        Access config values using dot notation.

        Example: config.get("ring.default_capacity") -> 4096
        """
        obj = self.config
        for key in dotpath.split("."):
            if hasattr(obj, key):
                obj = getattr(obj, key)
            elif isinstance(obj, dict) and key in obj:
                obj = obj[key]
            else:
                return default
        return obj

    def to_dict(self) -> Dict[str, Any]:
        """Export full config as dictionary."""
        return self._config.model_dump() if self._config else {}


def get_config() -> ByteringConfig:
    """Get the global configuration instance."""
    return ConfigManager().config
