"""Configuration management for pgchain.

Usage:
    >>> from pgchain.config import get_settings
    >>> settings = get_settings()
    >>> settings.max_in_elements
    1000
"""

from pgchain.config.options import (
    ConnectionConfig,
    PoolOptions,
    RetryOptions,
    SafetyOptions,
)
from pgchain.config.settings import Settings, get_settings

__all__ = [
    "ConnectionConfig",
    "PoolOptions",
    "RetryOptions",
    "SafetyOptions",
    "Settings",
    "get_settings",
]
