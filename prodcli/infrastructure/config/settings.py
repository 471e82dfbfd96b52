"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (~/.prodcli/config.yaml). Keys are dotted
(``api.token``, ``rate_limit.max_retries``); nested YAML sections are
flattened into the same form.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from prodcli.domain.errors import ConfigError
from prodcli.infrastructure.cache.entry import DEFAULT_TTL_SECONDS, TtlClass
from prodcli.infrastructure.cache.response_cache import DEFAULT_REFRESH_BATCH_SIZE
from prodcli.infrastructure.resilience.rate_limiter import RateLimitConfig
from prodcli.infrastructure.transport.http_transport import DEFAULT_BASE_URL

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".prodcli"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "PRODCLI_"

# Keys whose environment variable does not follow the PRODCLI_<KEY> convention
ENV_VAR_OVERRIDES: Dict[str, str] = {
    "api.token": "PRODUCTIVE_API_TOKEN",
    "api.organization_id": "PRODUCTIVE_ORG_ID",
    "api.base_url": "PRODUCTIVE_BASE_URL",
    "api.timeout_seconds": "PRODUCTIVE_TIMEOUT_SECONDS",
}

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False


def env_var_for(key: str) -> str:
    """Environment variable consulted for a dotted config key."""
    if key in ENV_VAR_OVERRIDES:
        return ENV_VAR_OVERRIDES[key]
    return ENV_PREFIX + key.upper().replace(".", "_")


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def _coerce(value: str) -> Any:
    """Converts common string forms from the environment to Python types."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        if "." in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def load_configuration(
    config_file: Path = DEFAULT_CONFIG_FILE,
    env_file: Optional[Path] = None,
    force: bool = False,
) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Defaults passed to get_config / the typed views below

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. YAML file (lowest priority)
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file; override=False keeps real environment variables on top
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("No .env file found at or above current directory.")

    # 3. Environment variables are read lazily in get_config
    _loaded = True
    logger.debug("Configuration loading process completed.")


def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by dotted key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable
    3. Loaded config (YAML file, set_config)
    4. Default value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_for(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if key in _config:
        return _config[key]

    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    try:
        cwd = Path.cwd()
    except OSError as e:
        logger.warning(f"Error searching for .env file: {e}")
        return None
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values that override every other source."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    global _test_config
    _test_config = {}
    logger.debug("Cleared testing configuration")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_number(key: str, default: Any, kind: type) -> Any:
    """Reads ``key`` as an int or float, raising ConfigError for values that are neither."""
    value = get_config(key, default)
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(
            f"Invalid value for {key}: {value!r} is not a number. "
            f"Check ~/.prodcli/config.yaml and the {env_var_for(key)} environment variable."
        ) from None


# --- Typed views ---

@dataclass
class ApiConfig:
    token: str
    organization_id: str
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 30.0


@dataclass
class CacheConfig:
    enabled: bool = True
    directory: Path = field(default_factory=lambda: default_cache_directory())
    ttl_seconds: Dict[TtlClass, int] = field(default_factory=lambda: dict(DEFAULT_TTL_SECONDS))
    refresh_batch_size: int = DEFAULT_REFRESH_BATCH_SIZE


def default_cache_directory() -> Path:
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg_cache) if xdg_cache else Path.home() / ".cache"
    return base / "prodcli"


def get_api_config(
    token: Optional[str] = None, organization_id: Optional[str] = None
) -> ApiConfig:
    """Credentials and endpoint settings. Explicit arguments win over configuration.

    Raises:
        ConfigError: If the token or organization id is missing.
    """
    token = token or get_config("api.token")
    organization_id = organization_id or get_config("api.organization_id")
    if not token:
        raise ConfigError.missing("api.token", env_var_for("api.token"))
    if not organization_id:
        raise ConfigError.missing("api.organization_id", env_var_for("api.organization_id"))
    return ApiConfig(
        token=str(token),
        organization_id=str(organization_id),
        base_url=str(get_config("api.base_url", DEFAULT_BASE_URL)),
        timeout_seconds=_as_number("api.timeout_seconds", 30, float),
    )


def get_rate_limit_config() -> RateLimitConfig:
    defaults = RateLimitConfig()
    return RateLimitConfig(
        enabled=_as_bool(get_config("rate_limit.enabled", defaults.enabled)),
        max_retries=_as_number("rate_limit.max_retries", defaults.max_retries, int),
        max_requests_per_10s=_as_number("rate_limit.max_requests_per_10s", defaults.max_requests_per_10s, int),
        reports_max_per_30s=_as_number("rate_limit.reports_max_per_30s", defaults.reports_max_per_30s, int),
        initial_backoff_ms=_as_number("rate_limit.initial_backoff_ms", defaults.initial_backoff_ms, int),
        max_backoff_ms=_as_number("rate_limit.max_backoff_ms", defaults.max_backoff_ms, int),
    )


def get_cache_config() -> CacheConfig:
    directory = get_config("cache.directory")
    ttl_seconds = {
        ttl_class: _as_number(f"cache.ttl.{ttl_class.value}", seconds, int)
        for ttl_class, seconds in DEFAULT_TTL_SECONDS.items()
    }
    return CacheConfig(
        enabled=_as_bool(get_config("cache.enabled", True)),
        directory=Path(directory).expanduser() if directory else default_cache_directory(),
        ttl_seconds=ttl_seconds,
        refresh_batch_size=_as_number("cache.refresh_batch_size", DEFAULT_REFRESH_BATCH_SIZE, int),
    )
