"""
Configuration loading utilities for the form builder.

This module loads the optional config.yaml, merges it over built-in defaults
and exposes single values to the rest of the application.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging
from copy import deepcopy

from .exceptions import ConfigurationLoadError

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("config.yaml")

STORAGE_BACKENDS = ('file', 'memory', 'session')

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

_config_cache: Optional[Dict[str, Any]] = None


def deep_merge(base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries, with update_dict taking precedence.

    Args:
        base_dict: Base dictionary (defaults)
        update_dict: Dictionary to merge in (user config)

    Returns:
        Merged dictionary
    """
    result = deepcopy(base_dict)

    for key, value in update_dict.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = deepcopy(value)

    return result


def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration.

    Returns:
        Dictionary with default configuration
    """
    return {
        'app': {
            'name': 'Form Builder',
            'version': '1.0.0'
        },
        'logging': {
            'level': 'INFO'
        },
        'storage': {
            'backend': 'file',
            'directory': '.form_store',
            'key': 'forms'
        },
        'expressions': {
            'max_length': 500
        },
        'ui': {
            'page_title': 'Form Builder',
            'sidebar_title': 'Navigation'
        }
    }


def read_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """
    Read a YAML configuration file.

    Returns:
        Parsed mapping, or None when the file is empty

    Raises:
        ConfigurationLoadError: If the file cannot be read, is not valid YAML
            or does not hold a mapping
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationLoadError(config_path, e) from e
    except (IOError, OSError) as e:
        raise ConfigurationLoadError(config_path, e) from e

    if user_config is not None and not isinstance(user_config, dict):
        raise ConfigurationLoadError(
            config_path,
            TypeError(f"expected a mapping, got {type(user_config).__name__}"),
            message=f"Configuration file is not a valid dictionary: {config_path}"
        )

    return user_config


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load application configuration, falling back to defaults.

    Args:
        config_path: Optional path to config file (defaults to config.yaml)

    Returns:
        Complete configuration dictionary
    """
    if config_path is None:
        config_path = CONFIG_FILE

    default_config = get_default_config()

    if not config_path.exists():
        logger.warning(f"Configuration file not found: {config_path}")
        logger.info("Using default configuration")
        return default_config

    try:
        user_config = read_config_file(config_path)
    except ConfigurationLoadError as e:
        logger.error(str(e))
        logger.info("Using default configuration")
        return default_config

    if user_config is None:
        logger.warning(f"Configuration file is empty: {config_path}")
        return default_config

    config = deep_merge(default_config, user_config)
    if not validate_config(config):
        logger.warning(f"Configuration in {config_path} has invalid values; some defaults may apply")

    logger.info(f"Successfully loaded configuration from {config_path}")
    return config


def get_app_config() -> Dict[str, Any]:
    """Configuration for the running application, loaded once and cached."""
    global _config_cache

    if _config_cache is None:
        _config_cache = load_config()
    return _config_cache


def clear_config_cache() -> None:
    """Forget the cached configuration so the next read reloads the file."""
    global _config_cache
    _config_cache = None


def get_config_value(section: str, key: str, default: Any = None) -> Any:
    """
    Get a specific configuration value.

    Args:
        section: Configuration section (e.g., 'storage', 'ui')
        key: Configuration key within section
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    config = get_app_config()
    section_values = config.get(section)
    if not isinstance(section_values, dict):
        return default
    return section_values.get(key, default)


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration structure and values.

    Args:
        config: Configuration dictionary to validate

    Returns:
        True if configuration is valid, False otherwise
    """
    required_sections = ['app', 'logging', 'storage', 'expressions', 'ui']

    for section in required_sections:
        if not isinstance(config.get(section), dict):
            logger.warning(f"Missing required configuration section: {section}")
            return False

    app = config['app']
    if 'name' not in app or 'version' not in app:
        logger.warning("Missing required app configuration (name or version)")
        return False

    level = config['logging'].get('level', 'INFO')
    if not isinstance(level, str) or level.upper() not in LOG_LEVELS:
        logger.warning(f"Unknown logging level: {level}")
        return False

    storage = config['storage']
    if storage.get('backend', 'file') not in STORAGE_BACKENDS:
        logger.warning(f"Unknown storage backend: {storage.get('backend')}")
        return False

    for name in ('directory', 'key'):
        if name in storage and (not isinstance(storage[name], str) or not storage[name].strip()):
            logger.warning(f"storage.{name} must be a non-empty string")
            return False

    max_length = config['expressions'].get('max_length', 500)
    try:
        if isinstance(max_length, bool) or int(max_length) <= 0:
            logger.warning("expressions.max_length must be positive")
            return False
    except (ValueError, TypeError):
        logger.warning("expressions.max_length must be a valid integer")
        return False

    return True
