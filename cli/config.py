"""
Configuration Management Module for the vaulttx CLI

Handles layered configuration loading: defaults, named network profiles,
YAML or JSON configuration files, and VAULTTX_ environment variables.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from psbt.address import NETWORK_HRP, address_to_script_pubkey
from psbt.exceptions import VaultTransactionError, InputValidationError


# Configuration file locations in order of precedence (highest to lowest)
CONFIG_SEARCH_PATHS = [
    Path('.vaulttx.yml'),
    Path('.vaulttx.json'),
    Path.home() / '.vaulttx' / 'config.yml',
    Path.home() / '.vaulttx' / 'config.json',
]

ENV_PREFIX = 'VAULTTX_'

# VAULTTX_LOGGING__LEVEL -> {'logging': {'level': ...}}
ENV_NESTING_SEPARATOR = '__'

OUTPUT_FORMATS = ('table', 'json', 'yaml')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

DEFAULT_CONFIG = {
    'network': 'signet',
    'fee_rate': 2.0,
    'change_address': None,
    'output_format': 'table',
    'logging': {
        'level': 'WARNING',
    },
}

PROFILES = {
    'mainnet': {
        'network': 'mainnet',
        'fee_rate': 10.0,
    },
    'testnet': {
        'network': 'testnet',
    },
    'signet': {
        'network': 'signet',
    },
    'regtest': {
        'network': 'regtest',
        'fee_rate': 1.0,
        'logging': {'level': 'DEBUG'},
    },
}


class ConfigurationError(VaultTransactionError):
    """A configuration source could not be read."""
    pass


class ConfigurationManager:
    """Manages layered configuration with environment variable support."""

    def __init__(self, config_file: Optional[str] = None, profile: Optional[str] = None,
                 environ: Optional[Dict[str, str]] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path; disables the search paths
            profile: Network profile to apply over the defaults
            environ: Environment mapping, os.environ when omitted
        """
        self.logger = logging.getLogger(__name__)
        self.config_file = config_file
        self.profile = profile
        self.environ = os.environ if environ is None else environ
        self._config_cache: Optional[Dict[str, Any]] = None
        self._config_sources: List[str] = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in layered order.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigurationError: For an unknown profile or an unreadable file
        """
        if self._config_cache is not None:
            return self._config_cache

        layers = [copy.deepcopy(DEFAULT_CONFIG)]
        self._config_sources = ["defaults"]

        if self.profile:
            if self.profile not in PROFILES:
                raise ConfigurationError(
                    f"Unknown profile: {self.profile} (choose from {', '.join(PROFILES)})"
                )
            layers.append(PROFILES[self.profile])
            self._config_sources.append(f"profile:{self.profile}")
            self.logger.debug(f"Applied profile: {self.profile}")

        config_path = self._find_config_file()
        if config_path is not None:
            file_config = self._load_config_file(config_path)
            if file_config:
                layers.append(file_config)
            self._config_sources.append(f"file:{config_path}")
            self.logger.debug(f"Loaded config from {config_path}")

        env_config = self._load_environment_variables()
        if env_config:
            layers.append(env_config)
            self._config_sources.append("environment")

        self._config_cache = self._deep_merge(*layers)
        return self._config_cache

    def _find_config_file(self) -> Optional[Path]:
        if self.config_file:
            path = Path(self.config_file)
            if not path.exists():
                raise ConfigurationError(f"Config file not found: {path}")
            return path

        for candidate in CONFIG_SEARCH_PATHS:
            if candidate.exists():
                return candidate
        return None

    def _load_config_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file."""
        try:
            with open(path, 'r') as f:
                if path.suffix in ('.yml', '.yaml'):
                    data = yaml.safe_load(f)
                elif path.suffix == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unknown config file format: {path}")
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load config from {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """Load configuration from VAULTTX_ environment variables."""
        env_config: Dict[str, Any] = {}

        for key, value in self.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTING_SEPARATOR)
            current = env_config
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool, None]:
        """Parse environment variable value to appropriate type."""
        lowered = value.lower()
        if lowered in ('true', 'yes'):
            return True
        if lowered in ('false', 'no'):
            return False
        if lowered in ('null', 'none'):
            return None

        try:
            return int(value)
        except ValueError:
            pass
        try:
            return float(value)
        except ValueError:
            pass

        return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge dictionaries; later ones win."""
        result: Dict[str, Any] = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = copy.deepcopy(value)

        return result

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'logging.level')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        current = self.load()

        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return current

    def set(self, key_path: str, value: Any):
        """Set configuration value by dot-notation path (in memory only)."""
        config = self.load()
        keys = key_path.split('.')

        current = config
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = value

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        config = self.load()
        errors = []

        network = config.get('network')
        if network not in NETWORK_HRP:
            errors.append(f"Invalid network: {network}")

        fee_rate = config.get('fee_rate')
        if isinstance(fee_rate, bool) or not isinstance(fee_rate, (int, float)) or fee_rate <= 0:
            errors.append(f"Fee rate must be a positive number, got {fee_rate}")

        output_format = config.get('output_format')
        if output_format not in OUTPUT_FORMATS:
            errors.append(f"Invalid output format: {output_format}")

        level = str(self.get('logging.level', '')).upper()
        if level not in LOG_LEVELS:
            errors.append(f"Invalid logging level: {self.get('logging.level')}")

        change_address = config.get('change_address')
        if change_address and network in NETWORK_HRP:
            try:
                address_to_script_pubkey(change_address, network)
            except InputValidationError as e:
                errors.append(f"Invalid change address: {e}")

        return errors

    def get_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded."""
        self.load()
        return list(self._config_sources)

    def reset(self):
        """Reset configuration cache."""
        self._config_cache = None
        self._config_sources = []
