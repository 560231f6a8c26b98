"""Configuration tools and utilities."""

from .config_loader import ConfigLoader, ServiceSettings, get_config

__all__ = [
    "ConfigLoader",
    "ServiceSettings",
    "get_config",
]
