"""
Configuration Loader

Loads and validates configuration from YAML files.
"""

import copy
import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from .config import (
    ARCHIVE_EXTENSIONS,
    BULK_UPDATE,
    REQUEST_TIMEOUT,
    STATE_FILE,
    USER_AGENT,
    VERSIONS_DIR,
    VOLUMES_PATH,
)

logger = logging.getLogger(__name__)

ENV_PATTERN = re.compile(r'\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}')

DEFAULT_CONFIG = {
    'servers': {},
    'pterodactyl': {},
    'file_access': {
        'mode': 'direct',
        'volumes_path': VOLUMES_PATH,
    },
    'paths': {
        'state_file': str(STATE_FILE),
        'versions_dir': str(VERSIONS_DIR),
    },
    'bulk_update': dict(BULK_UPDATE),
    'marketplace': {
        'user_agent': USER_AGENT,
        'timeout': REQUEST_TIMEOUT,
    },
    'scan': {
        'extensions': list(ARCHIVE_EXTENSIONS),
    },
}

# Sections merged key-by-key over the defaults; others are replaced
MERGED_SECTIONS = ('file_access', 'paths', 'bulk_update', 'marketplace', 'scan')


def get_config_paths() -> List[Path]:
    """
    Get list of config file paths to check in priority order

    Returns:
        List of paths to check (first found wins)
    """
    return [
        # 1. User config directory
        Path.home() / ".config" / "plugin-fleet-manager" / "config.yaml",
        # 2. Current working directory
        Path.cwd() / "config.yaml",
        # 3. Project root (for development)
        Path(__file__).parent.parent.parent.parent / "config.yaml",
    ]


def load_config(config_path: Optional[Path] = None) -> Dict:
    """
    Load configuration from YAML file

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Configuration dict with servers, pterodactyl, file_access, paths, etc.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    # Determine which config file to use
    config_files = [config_path] if config_path else get_config_paths()

    loaded_from = next((path for path in config_files if path.exists()), None)

    if not loaded_from:
        logger.info("No config file found, using defaults")
        return config

    logger.info(f"Loading configuration from: {loaded_from}")

    try:
        with open(loaded_from, 'r') as f:
            user_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML config: {e}")
        logger.info("Falling back to defaults")
        return config

    if not user_config:
        logger.warning(f"Config file {loaded_from} is empty")
        return config

    # Process environment variable substitution
    user_config = substitute_env_vars(user_config)

    for section, value in user_config.items():
        if section in MERGED_SECTIONS and isinstance(value, dict):
            config[section].update(value)
        else:
            config[section] = value

    logger.info(f"✓ Loaded {len(config['servers'] or {})} server(s) from config")
    return config


def substitute_env_vars(config):
    """
    Substitute environment variables in config values

    Handles patterns like:
    - ${ENV_VAR}
    - ${ENV_VAR:-default_value}
    """
    if isinstance(config, str):
        return ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), config)
    if isinstance(config, dict):
        return {k: substitute_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [substitute_env_vars(item) for item in config]
    return config


def validate_config(config: Dict) -> Tuple[bool, List[str]]:
    """
    Validate configuration structure

    Args:
        config: Configuration dict to validate

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    errors = []

    servers = config.get('servers')
    if not servers:
        errors.append("Config must define at least one server in 'servers' section")

    for server_name, server_config in (servers or {}).items():
        if not isinstance(server_config, dict):
            errors.append(f"Server '{server_name}' must be a mapping")
            continue

        if 'identifier' not in server_config:
            errors.append(f"Server '{server_name}' missing required 'identifier' field")

        if 'path' not in server_config and 'uuid' not in server_config:
            errors.append(f"Server '{server_name}' needs a 'path' or 'uuid' to locate its volume")

    mode = config.get('file_access', {}).get('mode', 'direct')
    if mode not in ('direct', 'api'):
        errors.append(f"file_access.mode must be 'direct' or 'api', got '{mode}'")

    # Validate Pterodactyl config (required in api mode)
    ptero = config.get('pterodactyl') or {}
    if mode == 'api' and not ptero:
        errors.append("file_access.mode 'api' requires a 'pterodactyl' section")

    if ptero:
        if 'panel_url' not in ptero:
            errors.append("Pterodactyl config missing 'panel_url'")

        if not ptero.get('api_key'):
            errors.append("Pterodactyl config missing 'api_key'")

    bulk = config.get('bulk_update', {})
    for key in ('delay_seconds', 'retry_delay_seconds'):
        value = bulk.get(key, 0)
        if not isinstance(value, (int, float)) or value < 0:
            errors.append(f"bulk_update.{key} must be a non-negative number")

    max_attempts = bulk.get('max_attempts', 1)
    if not isinstance(max_attempts, int) or max_attempts < 1:
        errors.append("bulk_update.max_attempts must be a positive integer")

    is_valid = len(errors) == 0
    return is_valid, errors


def save_config(config: Dict, config_path: Optional[Path] = None) -> bool:
    """
    Save configuration to YAML file

    Args:
        config: Configuration dict to save
        config_path: Optional path to save to (defaults to user config)

    Returns:
        True if saved successfully
    """
    if not config_path:
        config_path = get_config_paths()[0]

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        logger.error(f"Failed to save config: {e}")
        return False

    logger.info(f"✓ Configuration saved to: {config_path}")
    return True
