# --- START OF FILE config_manager.py ---

import json
import os
import sys

import constants
from paths import USER_CONFIG_FILE_PATH

CONFIG_ENV_VAR = "NBDATTACH_CONFIG"

# Defaults used when the config file doesn't have the setting
DEFAULT_SETTINGS = {
    "ready_timeout": constants.DEFAULT_READY_TIMEOUT,
    "poll_interval": constants.POLL_INTERVAL,
    "max_devices": constants.DEFAULT_MAX_DEVICES,
    "module_name": constants.NBD_MODULE_NAME,
    "client_name": constants.DEFAULT_CLIENT_NAME,
    "client_search_paths": [],
    "escalation_tools": list(constants.DEFAULT_ESCALATION_TOOLS),
    "backend_flags": dict(constants.DEFAULT_BACKEND_FLAGS),
}


def get_config_path() -> str:
    """Returns the config file path, honouring $NBDATTACH_CONFIG."""
    return os.environ.get(CONFIG_ENV_VAR) or USER_CONFIG_FILE_PATH


def load_config() -> dict:
    """Loads the configuration from the JSON file."""
    config_path = get_config_path()
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config = json.load(f)
                if isinstance(config, dict):
                    return config
                else:
                    print(f"CONFIG [WARNING]: Config file '{config_path}' does not contain a valid JSON object. Using defaults.", file=sys.stderr)
                    return {}
        except (json.JSONDecodeError, IOError) as e:
            print(f"CONFIG [WARNING]: Error loading config file '{config_path}': {e}. Using defaults.", file=sys.stderr)
            return {}
    return {}


# --- Setting accessors with defaults ---
_config_cache = None

def _get_cached_config() -> dict:
    """Internal helper to load config only once."""
    global _config_cache
    if _config_cache is None:
        _config_cache = load_config()
    return _config_cache


def reset_cache() -> None:
    """Forget the cached config so the next access re-reads the file."""
    global _config_cache
    _config_cache = None


def get_setting(key: str, default=None):
    """
    Gets a specific setting from the config.

    Falls back to `default` when given, otherwise to DEFAULT_SETTINGS.
    Dict-valued settings (backend_flags) are merged over their defaults so a
    config file may override a single flag.
    """
    fallback = default if default is not None else DEFAULT_SETTINGS.get(key)
    value = _get_cached_config().get(key, fallback)
    if isinstance(fallback, dict) and isinstance(value, dict):
        merged = dict(fallback)
        merged.update(value)
        return merged
    return value


def get_float_setting(key: str, default=None):
    """Gets a numeric setting, returning the default when invalid or not positive."""
    fallback = default if default is not None else DEFAULT_SETTINGS.get(key)
    value = get_setting(key, fallback)
    if value is None:
        return None
    try:
        value = float(value)
    except (ValueError, TypeError):
        print(f"CONFIG [WARNING]: Invalid {key} in config. Using default: {fallback}", file=sys.stderr)
        return fallback
    if value <= 0:
        return fallback
    return value

# --- END OF FILE config_manager.py ---
