"""
Configuration package for the video extractor.

Re-exports all configuration components.
"""

from .constants import (
    ALL_CHANNELS,
    DEFAULT_EXTRACTION_CONFIG,
    DEFAULT_FRAME_DURATION_NS,
    MESSAGE_ENCODING,
    MESSAGE_SCHEMA_NAME,
)
from .settings import Config, load_config
from .logging import setup_logging, console

__all__ = [
    # Constants
    'ALL_CHANNELS',
    'DEFAULT_EXTRACTION_CONFIG',
    'DEFAULT_FRAME_DURATION_NS',
    'MESSAGE_ENCODING',
    'MESSAGE_SCHEMA_NAME',

    # Classes
    'Config',

    # Functions and objects
    'load_config',
    'setup_logging',
    'console',
]
