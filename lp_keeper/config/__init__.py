"""
Configuration module.

Typed defaults, YAML-backed loading with precedence, and validation.
"""
from .defaults import KeeperConfig, get_default_config
from .loader import ConfigLoader
from .validation import ConfigValidator, ValidationError

__all__ = [
    "KeeperConfig",
    "get_default_config",
    "ConfigLoader",
    "ConfigValidator",
    "ValidationError",
]
