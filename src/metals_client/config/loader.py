# File: metals_client/config/loader.py

"""Loads and manages client configuration from multiple sources.

This module provides functions to load the `metals` configuration section from
a YAML file (defaults) and environment variables (overrides). It determines
the path of the default configuration file (`config.yml`) by:
1. Checking the `METALS_CLIENT_CONFIG_FILE` environment variable.
2. Searching upwards from this file's location for a project root marker
   (`pyproject.toml`) and looking for the file in that root directory.
3. As a fallback, looking in the current working directory (with a warning).

It exposes the loaded configuration via a singleton dictionary `APP_CONFIG`
and provides `get_metals_settings` to turn it into the immutable
`MetalsSettings` consumed by the launch code.
"""

import logging
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

import yaml
from dotenv import load_dotenv

# Initialize logging for this module
logger = logging.getLogger(__name__)
# If run standalone or the root logger isn't set, this provides a default.
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level=os.environ.get("LOGLEVEL", "INFO").upper(),
        format="%(levelname)s: [%(name)s] %(message)s",
    )

DEFAULT_CONFIG_FILENAME = "config.yml"
PROJECT_ROOT_MARKER = "pyproject.toml"  # File to indicate project root

# Environment variable for specifying the config file path explicitly
ENV_CONFIG_PATH = "METALS_CLIENT_CONFIG_FILE"

# Built-in defaults, used for any key the YAML file does not set.
DEFAULT_SERVER_VERSION = "0.9.0"
DEFAULT_CLIENT_NAME = "coc-metals"
DEFAULT_COURSIER_PATH = "coursier"
DEFAULT_REQUEST_TIMEOUT = 30

# Keys whose change requires a server restart to take effect.
LAUNCH_CONFIGURATION_KEYS = (
    "java_home",
    "server_version",
    "server_properties",
    "custom_repositories",
)

# Defines mappings from environment variables to nested configuration dictionary keys
# for OVERRIDING specific values within the loaded config.
# Format: (ENV_VARIABLE_NAME, [list, of, config, keys], target_type_for_conversion)
ENV_OVERRIDES: List[Tuple[str, List[str], Type]] = [
    ("METALS_JAVA_HOME", ["metals", "java_home"], str),
    ("METALS_SERVER_VERSION", ["metals", "server_version"], str),
    ("METALS_COURSIER_PATH", ["metals", "coursier_path"], str),
    ("METALS_REQUEST_TIMEOUT", ["metals", "request_timeout"], int),
]


@dataclass(frozen=True)
class MetalsSettings:
    """Read-only view of the `metals` configuration section.

    Attributes:
        java_home: Configured Java home hint. Empty means "detect".
        server_version: Version configured by the user. Empty means "use default".
        default_server_version: The version shipped with this client.
        server_properties: Extra JVM properties passed to the server.
        custom_repositories: Extra artifact repositories for the resolver.
        coursier_path: Path to the Coursier launcher jar.
        client_name: Value sent as `-Dmetals.client`.
        request_timeout: Timeout in seconds for LSP requests.
    """

    java_home: str = ""
    server_version: str = ""
    default_server_version: str = DEFAULT_SERVER_VERSION
    server_properties: Tuple[str, ...] = field(default_factory=tuple)
    custom_repositories: Tuple[str, ...] = field(default_factory=tuple)
    coursier_path: str = DEFAULT_COURSIER_PATH
    client_name: str = DEFAULT_CLIENT_NAME
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT

    @property
    def effective_server_version(self) -> str:
        return self.server_version or self.default_server_version

    @property
    def uses_default_version(self) -> bool:
        return self.effective_server_version == self.default_server_version


def _find_project_root(
    start_path: pathlib.Path, marker_filename: str = PROJECT_ROOT_MARKER
) -> Optional[pathlib.Path]:
    """Searches upward from start_path for a directory containing marker_filename.

    Args:
        start_path: The directory path to begin the search from.
        marker_filename: The filename to look for as the project root indicator.

    Returns:
        The Path object for the directory containing the marker file, or None if
        not found before reaching the filesystem root.
    """
    current_path = start_path.resolve()
    while True:
        if (current_path / marker_filename).is_file():
            logger.debug(f"Found project root marker '{marker_filename}' at '{current_path}'")
            return current_path
        parent_path = current_path.parent
        if parent_path == current_path:
            logger.debug(f"Project root marker '{marker_filename}' not found searching from '{start_path}'.")
            return None
        current_path = parent_path


def _update_nested_dict(d: Dict[str, Any], keys: List[str], value: Any):
    """Safely sets a value in a nested dictionary based on a list of keys.

    Creates intermediate dictionaries if they don't exist. Logs an error
    if a path conflict occurs (e.g., expecting a dict but finding a non-dict).
    """
    node = d
    for key in keys[:-1]:
        child = node.setdefault(key, {})
        if not isinstance(child, dict):
            logger.error(
                f"Config structure conflict: Expected dict at '{key}' "
                f"while setting path '{'.'.join(keys)}', but found type {type(child)}. "
                f"Cannot apply value '{value}'."
            )
            return
        node = child

    node[keys[-1]] = value


def _resolve_config_path() -> pathlib.Path:
    env_config_path_str = os.getenv(ENV_CONFIG_PATH)
    if env_config_path_str:
        path = pathlib.Path(env_config_path_str)
        logger.info(f"Using config path from environment variable {ENV_CONFIG_PATH}: '{path}'")
        return path.resolve()

    project_root = _find_project_root(start_path=pathlib.Path(__file__).parent)
    if project_root:
        logger.debug(f"Determined project root: '{project_root}'")
        return (project_root / DEFAULT_CONFIG_FILENAME).resolve()

    logger.warning(
        f"Could not find project root marker '{PROJECT_ROOT_MARKER}'. "
        "Falling back to current working directory for the config path."
    )
    return (pathlib.Path.cwd() / DEFAULT_CONFIG_FILENAME).resolve()


def load_configuration(
    config_path: Optional[pathlib.Path] = None,
    dotenv_path: Optional[str] = None,
    env_override_map: List[Tuple[str, List[str], Type]] = ENV_OVERRIDES,
) -> Dict[str, Any]:
    """Loads configuration layers: YAML defaults, then environment overrides.

    Args:
        config_path: Explicit YAML file. If None, the path is determined from
            `METALS_CLIENT_CONFIG_FILE`, the project root, or the CWD.
        dotenv_path: Explicit path to the .env file. If None, `python-dotenv`
            searches standard locations.
        env_override_map: The mapping defining which environment variables
            override which configuration keys and their types.

    Returns:
        A dictionary containing the merged configuration. Returns an empty
        dictionary if the YAML file exists but cannot be parsed.
    """
    config: Dict[str, Any] = {}
    effective_config_path = config_path.resolve() if config_path else _resolve_config_path()

    # --- Load Base YAML Configuration ---
    try:
        with open(effective_config_path, encoding="utf-8") as f:
            loaded_yaml = yaml.safe_load(f)
            config = loaded_yaml if isinstance(loaded_yaml, dict) else {}
        logger.info(f"Loaded base config from '{effective_config_path}'.")
    except FileNotFoundError:
        logger.warning(f"Base config file '{effective_config_path}' not found. Using built-in defaults.")
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML '{effective_config_path}': {e}", exc_info=True)
        return {}

    # --- Load .env file into environment variables ---
    try:
        loaded_env = load_dotenv(dotenv_path=dotenv_path, override=True)
        if loaded_env:
            logger.info(".env file loaded into environment variables (overriding existing).")
        else:
            logger.debug(".env file not found or empty.")
    except OSError as e:
        logger.error(f"Error loading .env file: {e}", exc_info=True)

    # --- Apply Environment Variable Overrides for config VALUES ---
    override_count = 0
    for env_var, config_keys, target_type in env_override_map:
        env_value_str = os.getenv(env_var)
        if env_value_str is None:
            continue
        try:
            typed_value = target_type(env_value_str)
        except ValueError:
            logger.warning(
                f"Value override failed: Cannot convert env var '{env_var}' "
                f"value '{env_value_str}' to target type {target_type.__name__}."
            )
            continue
        _update_nested_dict(config, config_keys, typed_value)
        logger.info(
            f"Applied value override: '{'.'.join(config_keys)}' = '{typed_value}' "
            f"(from env '{env_var}')"
        )
        override_count += 1
    if override_count > 0:
        logger.info(f"Applied {override_count} environment variable value override(s).")

    return config


def _as_str_tuple(value: Any, key: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    logger.warning(f"Config key 'metals.{key}' should be a list, got {type(value).__name__}. Ignoring it.")
    return ()


def get_metals_settings(config: Optional[Dict[str, Any]] = None) -> MetalsSettings:
    """Builds `MetalsSettings` from a loaded configuration dictionary.

    Args:
        config: A configuration dictionary as returned by `load_configuration`.
            Defaults to `APP_CONFIG`.

    Returns:
        The immutable settings for one activation.
    """
    section = (APP_CONFIG if config is None else config).get("metals") or {}
    if not isinstance(section, dict):
        logger.warning("Config section 'metals' is not a mapping. Using built-in defaults.")
        section = {}

    try:
        request_timeout = int(section.get("request_timeout", DEFAULT_REQUEST_TIMEOUT))
    except (TypeError, ValueError):
        logger.warning("Invalid 'metals.request_timeout'. Using default.")
        request_timeout = DEFAULT_REQUEST_TIMEOUT

    return MetalsSettings(
        java_home=str(section.get("java_home") or ""),
        server_version=str(section.get("server_version") or ""),
        default_server_version=str(
            section.get("default_server_version") or DEFAULT_SERVER_VERSION
        ),
        server_properties=_as_str_tuple(section.get("server_properties"), "server_properties"),
        custom_repositories=_as_str_tuple(section.get("custom_repositories"), "custom_repositories"),
        coursier_path=str(section.get("coursier_path") or DEFAULT_COURSIER_PATH),
        client_name=str(section.get("client_name") or DEFAULT_CLIENT_NAME),
        request_timeout=request_timeout,
    )


def changed_launch_keys(old: MetalsSettings, new: MetalsSettings) -> List[str]:
    """Returns the launch-relevant keys whose values differ between two settings."""
    return [key for key in LAUNCH_CONFIGURATION_KEYS if getattr(old, key) != getattr(new, key)]


# --- Singleton Configuration Instance ---
# Load the configuration once when this module is first imported.
APP_CONFIG: Dict[str, Any] = load_configuration()
