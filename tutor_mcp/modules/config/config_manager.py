"""
Centralized configuration management using Pydantic models.

This module provides a unified configuration system that:
- Uses pydantic-settings for type validation and environment variable loading
- Supports both .env files and direct environment variables
- Falls back to the documented defaults for every MCP client knob
- Provides proper error handling with logging tracebacks
"""

import logging
from typing import Dict, Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class AppSettings(BaseSettings):
    """MCP client settings loaded from environment variables."""

    # Logging settings
    log_level: str = "INFO"  # Override default logging level (DEBUG, INFO, WARNING, ERROR)
    app_log_dir: Optional[str] = Field(default=None, validation_alias="APP_LOG_DIR")
    feature_metrics_logging_enabled: bool = Field(
        default=False,
        description="Emit [METRIC] log lines for tool calls and handshakes",
        validation_alias="FEATURE_METRICS_LOGGING_ENABLED",
    )

    # Capability server location
    mcp_server_url: str = Field(default="http://localhost:3000", validation_alias="MCP_SERVER_URL")
    mcp_sse_path: str = Field(default="/sse", validation_alias="MCP_SSE_PATH")

    # Handshake / retry policy
    mcp_handshake_timeout: float = Field(
        default=10.0,
        description="Seconds to wait for the SSE endpoint announcement",
        validation_alias="MCP_HANDSHAKE_TIMEOUT",
    )
    mcp_connect_max_attempts: int = Field(
        default=3,
        description="Handshake attempts before giving up with ConnectionExhausted",
        validation_alias="MCP_CONNECT_MAX_ATTEMPTS",
    )
    mcp_connect_retry_delay: float = Field(
        default=2.0,
        description="Fixed delay in seconds between handshake attempts",
        validation_alias="MCP_CONNECT_RETRY_DELAY",
    )

    # Per-call policy
    mcp_call_timeout: float = Field(
        default=30.0,
        description="Seconds allowed for one JSON-RPC round trip",
        validation_alias="MCP_CALL_TIMEOUT",
    )
    mcp_session_retry_delay: float = Field(
        default=1.0,
        description="Delay before the single retry of a read call after session invalidation",
        validation_alias="MCP_SESSION_RETRY_DELAY",
    )

    # MCP initialize handshake
    mcp_protocol_version: str = Field(default="2024-11-05", validation_alias="MCP_PROTOCOL_VERSION")
    mcp_client_name: str = Field(default="tutor-mcp-client", validation_alias="MCP_CLIENT_NAME")

    # Learner context cache
    learner_context_ttl_seconds: float = Field(default=300.0, validation_alias="LEARNER_CONTEXT_TTL_SECONDS")

    @field_validator("mcp_server_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Command endpoint paths are appended to the base URL verbatim."""
        return v.rstrip("/")

    @field_validator("mcp_connect_max_attempts")
    @classmethod
    def at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MCP_CONNECT_MAX_ATTEMPTS must be at least 1")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "env_prefix": "",
    }


class ConfigManager:
    """Centralized configuration manager with proper error handling."""

    def __init__(self):
        self._app_settings: Optional[AppSettings] = None

    @property
    def app_settings(self) -> AppSettings:
        """Get application settings (cached)."""
        if self._app_settings is None:
            try:
                self._app_settings = AppSettings()
                logger.info("Application settings loaded successfully")
            except Exception as e:
                logger.error(f"Failed to load application settings: {e}", exc_info=True)
                # Ignore the environment and fall back to the documented defaults
                self._app_settings = AppSettings.model_construct()
        return self._app_settings

    def reload_configs(self) -> None:
        """Drop cached settings so the next access re-reads the environment."""
        self._app_settings = None
        logger.info("Configuration cache cleared, will reload on next access")

    def validate_config(self) -> Dict[str, bool]:
        """Validate configuration and return status per check."""
        status = {}

        try:
            AppSettings()
            status["app_settings"] = True
        except Exception as e:
            logger.error(f"App settings validation failed: {e}", exc_info=True)
            status["app_settings"] = False

        parsed = urlparse(self.app_settings.mcp_server_url)
        status["mcp_server_url"] = parsed.scheme in ("http", "https") and bool(parsed.netloc)
        if not status["mcp_server_url"]:
            logger.warning(f"MCP_SERVER_URL is not an http(s) URL: {self.app_settings.mcp_server_url}")

        settings = self.app_settings
        status["timeouts"] = settings.mcp_handshake_timeout > 0 and settings.mcp_call_timeout > 0
        if not status["timeouts"]:
            logger.warning("MCP handshake and call timeouts must both be positive")

        return status


# Global configuration manager instance
config_manager = ConfigManager()


def get_app_settings() -> AppSettings:
    """Get application settings."""
    return config_manager.app_settings
