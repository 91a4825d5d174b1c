"""
Settings management for the video extractor.

Provides configuration handling and management. Values are layered as
defaults < environment (optionally loaded from a .env file) < explicit
overrides such as command line flags.
"""

import os
from typing import Any, Dict, Optional

from dotenv import find_dotenv, load_dotenv

from .constants import DEFAULT_EXTRACTION_CONFIG


class Config:
    """
    Extraction settings, a flat mapping of the keys in DEFAULT_EXTRACTION_CONFIG.

    Built by load_config(); tests may construct one directly with only the
    keys they need.
    """
    def __init__(self, config_data: Optional[Dict[str, Any]] = None):
        self._config = dict(config_data) if config_data is not None else {}

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Value of a setting, or default when it is not set."""
        return self._config.get(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        self._config[key] = value

    def update_config(self, values: Dict[str, Any]) -> None:
        """
        Override settings.

        Raises:
            ValueError: If a key is not a known setting
        """
        unknown = sorted(set(values) - set(DEFAULT_EXTRACTION_CONFIG))
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
        self._config.update(values)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._config)

    def __repr__(self) -> str:
        return f"Config({self._config!r})"


def _optional_float(value: str) -> Optional[float]:
    if value.strip().lower() in ("", "none", "0"):
        return None
    return float(value)


def _boolean(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# Environment variable -> (setting key, parser)
ENV_OVERRIDES: Dict[str, tuple] = {
    'MCAP_VIDEO_QUEUE_SIZE': ('queue_size', int),
    'MCAP_VIDEO_TIMEOUT': ('timeout_seconds', _optional_float),
    'MCAP_VIDEO_DRAIN_TIMEOUT': ('drain_timeout', _optional_float),
    'MCAP_VIDEO_WORKERS': ('max_workers', int),
    'MCAP_VIDEO_LOG_LEVEL': ('log_level', str.upper),
    'MCAP_VIDEO_LOG_TIME_ORDER': ('log_time_order', _boolean),
    'MCAP_VIDEO_FASTSTART': ('faststart', _boolean),
}


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    overrides = {}
    for variable, (key, parse) in ENV_OVERRIDES.items():
        raw = environ.get(variable)
        if raw is None:
            continue
        try:
            overrides[key] = parse(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {variable}: {raw!r} ({e})") from e
    return overrides


def _validate(config: Config) -> None:
    if config.get_setting('queue_size') < 1:
        raise ValueError("queue_size must be >= 1")
    if config.get_setting('max_workers') < 1:
        raise ValueError("max_workers must be >= 1")
    for key in ('timeout_seconds', 'drain_timeout'):
        value = config.get_setting(key)
        if value is not None and value <= 0:
            raise ValueError(f"{key} must be positive")


def load_config(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
    dotenv: bool = True,
) -> Config:
    """
    Build the extraction configuration.

    Args:
        overrides: Highest priority values; None entries are ignored
        environ: Environment to read, defaults to os.environ
        dotenv: Load a .env file into os.environ first

    Returns:
        Config: The merged configuration

    Raises:
        ValueError: If an environment variable or override is invalid
    """
    if dotenv and environ is None:
        load_dotenv(find_dotenv(usecwd=True))
    config = Config(DEFAULT_EXTRACTION_CONFIG)
    config.update_config(_env_overrides(os.environ if environ is None else environ))
    if overrides:
        config.update_config({k: v for k, v in overrides.items() if v is not None})
    _validate(config)
    return config
