"""
Configuration manager for the craft profit scanner.

Handles loading and managing application configuration from YAML files.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml

from datasources.aodp_url import DEFAULT_CITIES, SERVER_BASE
from datasources.http import RetryPolicy
from utils.paths import ARTE_MAP_PATH, CONFIG_PATH, LOG_DIR

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when the configuration file exists but cannot be used."""
    pass


class ConfigManager:
    """Manages application configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager."""
        self.logger = logging.getLogger(__name__)

        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = CONFIG_PATH

        self._config = None

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file, merged over the defaults."""
        if not self.config_path.exists():
            self.logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._config = self.get_default_config()
            return self._config

        try:
            with self.config_path.open('r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except (OSError, UnicodeDecodeError) as e:
            self.logger.error(f"Failed to read configuration: {e}")
            raise ConfigError(f"Cannot read {self.config_path}: {e}") from e
        except yaml.YAMLError as e:
            self.logger.error(f"Failed to parse configuration: {e}")
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ConfigError(f"{self.config_path} must contain a mapping at the top level")

        self._config = self._merge_configs(self.get_default_config(), config)
        self.logger.info(f"Configuration loaded from {self.config_path}")
        return self._config

    def get_config(self) -> Dict[str, Any]:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports dot notation)."""
        config = self.get_config()

        keys = key.split('.')
        value = config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any):
        """Set configuration value by key (supports dot notation)."""
        config = self.get_config()

        keys = key.split('.')
        current = config

        for k in keys[:-1]:
            if k not in current:
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value

    def save_config(self, config: Optional[Dict[str, Any]] = None, config_path: Optional[str] = None):
        """Save configuration to YAML file atomically."""
        if config is not None:
            self._config = config

        if not self._config:
            self.logger.warning("No configuration to save")
            return

        save_path = Path(config_path) if config_path else self.config_path
        save_path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = save_path.with_suffix(save_path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self._config, f, default_flow_style=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, save_path)

        self.logger.info(f"Configuration saved to {save_path}")

    def get_default_config(self) -> Dict[str, Any]:
        """Return default configuration values."""
        return copy.deepcopy(self._get_default_config())

    def _get_default_config(self) -> Dict[str, Any]:
        return {
            'server': 'europe',
            'city': 'Martlock',
            'cities': list(DEFAULT_CITIES),
            'qualities': [],
            'prices': {
                'chunk_size': 150,
                'courtesy_delay_ms': 120,
                'courtesy_jitter_ms': 100,
                'connect_timeout_seconds': 5,
                'read_timeout_seconds': 10
            },
            'retry': {
                'max_attempts': 4,
                'base_delay_ms': 300,
                'jitter_ms': 100,
                'retry_statuses': [429, 502, 503, 504]
            },
            'scan': {
                'sale_tax_pct': 4.0,
                'listing_pct': 2.5,
                'return_rate_pct': 15.2,
                'station_fee_per_100': 100,
                'tome_price': 0
            },
            'snapshots': {
                'base_url': SERVER_BASE['local'],
                'chunk_size': 200
            },
            'data': {
                'arte_map': str(ARTE_MAP_PATH)
            },
            'logging': {
                'level': "INFO",
                'dir': str(LOG_DIR),
                'max_size_mb': 2,
                'backup_count': 5
            }
        }

    def _merge_configs(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Merge user configuration with defaults."""
        result = default.copy()

        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def get_retry_policy(self) -> RetryPolicy:
        """Build the shared retry policy from the ``retry`` section."""
        return RetryPolicy.from_config(self.get('retry', {}))

    def _number(self, key: str, errors: List[str], cast=float) -> Optional[float]:
        value = self.get(key)
        try:
            return cast(value)
        except (TypeError, ValueError):
            errors.append(f"{key} must be a number, got {value!r}")
            return None

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if str(self.get('server', '')).lower() not in SERVER_BASE:
            errors.append(f"Unknown server: {self.get('server')}")

        cities = self.get('cities', [])
        if not cities:
            errors.append("No cities configured")
        elif self.get('city') not in cities:
            errors.append(f"Preferred city {self.get('city')!r} is not in the city list")

        for q in self.get('qualities', []) or []:
            if q not in (1, 2, 3, 4, 5):
                errors.append(f"Invalid quality: {q}")

        chunk_size = self._number('prices.chunk_size', errors, int)
        if chunk_size is not None and chunk_size < 1:
            errors.append("prices.chunk_size must be at least 1")
        for key in ('courtesy_delay_ms', 'courtesy_jitter_ms',
                    'connect_timeout_seconds', 'read_timeout_seconds'):
            self._number(f'prices.{key}', errors)

        max_attempts = self._number('retry.max_attempts', errors, int)
        if max_attempts is not None and max_attempts < 1:
            errors.append("retry.max_attempts must be at least 1")
        self._number('retry.base_delay_ms', errors)
        self._number('retry.jitter_ms', errors)
        statuses = self.get('retry.retry_statuses', [])
        if not isinstance(statuses, list) or not all(isinstance(s, int) for s in statuses):
            errors.append(f"retry.retry_statuses must be a list of status codes, got {statuses!r}")

        for key in ('sale_tax_pct', 'listing_pct', 'return_rate_pct'):
            value = self._number(f'scan.{key}', errors)
            if value is not None and not (0 <= value <= 100):
                errors.append(f"scan.{key} must be between 0 and 100")
        station_fee = self._number('scan.station_fee_per_100', errors)
        if station_fee is not None and station_fee < 0:
            errors.append("scan.station_fee_per_100 must not be negative")
        self._number('scan.tome_price', errors)
        self._number('snapshots.chunk_size', errors, int)

        if str(self.get('logging.level', 'INFO')).upper() not in LOG_LEVELS:
            errors.append(f"Unknown log level: {self.get('logging.level')}")
        self._number('logging.max_size_mb', errors, int)
        self._number('logging.backup_count', errors, int)

        return errors
