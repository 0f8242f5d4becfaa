"""Configuration module for the MCP client.

This module provides centralized configuration management with:
- pydantic-settings models for validation
- Environment variable and .env loading
- Documented defaults for every timeout and retry knob
"""

from .config_manager import (
    AppSettings,
    ConfigManager,
    config_manager,
    get_app_settings,
)

__all__ = [
    "AppSettings",
    "ConfigManager",
    "config_manager",
    "get_app_settings",
]
