"""
Configuration Management Module for the UniChat Profile CLI

Handles hierarchical configuration loading, environment variable mapping,
validation, and management of settings across different environments.
"""

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

# Configuration file locations in order of precedence (highest to lowest)
CONFIG_SEARCH_PATHS = [
    Path('.uchp.yml'),                       # Project-specific YAML
    Path('.uchp.json'),                      # Project-specific JSON
    Path.home() / '.uchp' / 'config.yml',    # User global YAML
    Path.home() / '.uchp' / 'config.json',   # User global JSON
]

# Environment variable prefix; nested keys are separated by a double underscore
ENV_PREFIX = 'UCHP_'
ENV_SEPARATOR = '__'

DEFAULT_CONFIG = {
    'storage': {
        'dir': '~/.uchp/registry',
        'compressed': False,
        'backup_count': 5,
        'lock_timeout': 30.0
    },

    'token': {
        'name': 'UniChat Profile',
        'symbol': 'UCHP',
        'default_avatar_cid': 'QmDefaultAvatarCid'
    },

    'cli': {
        'output_format': 'table',  # table, json, yaml
        'account': None,
        'confirm_destructive': True
    }
}

PROFILES = {
    'production': {
        'storage': {'compressed': True, 'backup_count': 10},
        'cli': {'confirm_destructive': True}
    },
    'development': {
        'storage': {'dir': './profile_data', 'backup_count': 2},
        'cli': {'confirm_destructive': False}
    }
}

_ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')


class _ConfigLoader(yaml.SafeLoader):
    """YAML loader that keeps hex scalars such as account addresses as strings."""


def _construct_int(loader: _ConfigLoader, node: yaml.ScalarNode) -> Union[int, str]:
    value = loader.construct_scalar(node)
    if value.lstrip('+-').lower().startswith('0x'):
        return value
    return loader.construct_yaml_int(node)


_ConfigLoader.add_constructor('tag:yaml.org,2002:int', _construct_int)


class ConfigurationManager:
    """Manages hierarchical configuration with environment variable support."""

    def __init__(self, config_file: Optional[str] = None, profile: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
            profile: Configuration profile to load (production, development)
        """
        self.logger = logging.getLogger('uchp-cli.config')
        self.config_file = config_file
        self.profile = profile
        self._config_cache: Optional[Dict[str, Any]] = None
        self._config_sources: List[str] = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in hierarchical order.

        Returns:
            Merged configuration dictionary
        """
        if self._config_cache is not None:
            return self._config_cache

        self._config_sources = ["defaults"]
        configs = [copy.deepcopy(DEFAULT_CONFIG)]

        if self.profile:
            if self.profile not in PROFILES:
                raise ValueError(f"Unknown configuration profile: {self.profile}")
            configs.append(PROFILES[self.profile])
            self._config_sources.append(f"profile:{self.profile}")
            self.logger.debug(f"Applied profile: {self.profile}")

        if self.config_file:
            path = Path(self.config_file)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {path}")
            configs.append(self._load_config_file(path))
            self._config_sources.append(f"file:{path}")
        else:
            for config_path in CONFIG_SEARCH_PATHS:
                if config_path.exists():
                    configs.append(self._load_config_file(config_path))
                    self._config_sources.append(f"file:{config_path}")
                    self.logger.debug(f"Loaded config from {config_path}")
                    break  # Use first found config file

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self._config_sources.append("environment")

        self._config_cache = self._deep_merge(*configs)
        self._expand_paths(self._config_cache)

        return self._config_cache

    def _load_config_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file."""
        with open(path, 'r') as f:
            if path.suffix in ['.yml', '.yaml']:
                data = yaml.load(f, Loader=_ConfigLoader)
            elif path.suffix == '.json':
                data = json.load(f)
            else:
                raise ValueError(f"Unknown config file format: {path}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            # e.g., UCHP_TOKEN__DEFAULT_AVATAR_CID -> {'token': {'default_avatar_cid': value}}
            parts = key[len(ENV_PREFIX):].lower().split(ENV_SEPARATOR)
            current = env_config

            for part in parts[:-1]:
                current = current.setdefault(part, {})

            current[parts[-1]] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool, None]:
        """Parse environment variable value to appropriate type."""
        if value.lower() in ['true', 'yes']:
            return True
        if value.lower() in ['false', 'no']:
            return False
        if value.lower() in ['null', 'none']:
            return None

        # Addresses look like hex integers to json; keep them as strings
        if value.startswith('0x'):
            return value

        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries."""
        result: Dict[str, Any] = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = value

        return result

    def _expand_paths(self, config: Dict[str, Any]):
        """Expand ~ and environment variables in path values."""
        for key, value in config.items():
            if isinstance(value, dict):
                self._expand_paths(value)
            elif isinstance(value, str):
                if value.startswith('~') or '$' in value:
                    config[key] = os.path.expanduser(os.path.expandvars(value))

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'token.default_avatar_cid')
            default: Default value if key not found
        """
        current: Any = self.load()

        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return current

    def set(self, key_path: str, value: Any):
        """Set configuration value by dot-notation path."""
        config = self.load()

        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            current = current.setdefault(key, {})

        current[keys[-1]] = value

    def save(self, path: Optional[str] = None, format: str = 'yaml') -> Path:
        """
        Save current configuration to file.

        Args:
            path: File path to save to (default: project config file)
            format: Output format ('yaml' or 'json')
        """
        config = self.load()

        if not path:
            path = '.uchp.yml' if format == 'yaml' else '.uchp.json'

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        with open(target, 'w') as f:
            if format == 'yaml':
                yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(config, f, indent=2)

        self.logger.info(f"Configuration saved to {target}")
        return target

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        config = self.load()
        errors = []

        storage = config.get('storage', {})
        if not storage.get('dir'):
            errors.append("Storage directory is required")
        backup_count = storage.get('backup_count')
        if not isinstance(backup_count, int) or backup_count < 0:
            errors.append("Storage backup_count must be a non-negative integer")
        lock_timeout = storage.get('lock_timeout')
        if not isinstance(lock_timeout, (int, float)) or lock_timeout <= 0:
            errors.append("Storage lock_timeout must be a positive number")

        token = config.get('token', {})
        if not token.get('name'):
            errors.append("Token name is required")
        if not token.get('symbol'):
            errors.append("Token symbol is required")

        output_format = config.get('cli', {}).get('output_format')
        if output_format not in ['table', 'json', 'yaml']:
            errors.append(f"Invalid output format: {output_format}")

        account = config.get('cli', {}).get('account')
        if account is not None and not (isinstance(account, str) and _ADDRESS_PATTERN.match(account)):
            errors.append(f"Invalid default account: {account}")

        return errors

    def get_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded."""
        self.load()
        return self._config_sources

    def reset(self):
        """Reset configuration cache."""
        self._config_cache = None
        self._config_sources = []


def load_config(config_file: Optional[str] = None,
                profile: Optional[str] = None) -> Dict[str, Any]:
    """Convenience function to load configuration."""
    return ConfigurationManager(config_file, profile).load()
