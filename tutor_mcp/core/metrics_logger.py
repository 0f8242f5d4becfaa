"""
Metrics logging for MCP client activity without capturing learner data.

Metric lines:
- Use the [METRIC] prefix for easy filtering
- Carry the learner id (sanitized) so usage can be tracked per learner
- Only log metadata (tool names, durations, counts, outcome)
- NEVER log search queries, question text or server replies

Usage:
    from tutor_mcp.core.metrics_logger import log_metric

    log_metric("tool_call", child_id, tool_name="search_database", duration_ms=42, success=True)
    log_metric("handshake", None, attempts=2, outcome="ready")
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def log_metric(
    event_type: str,
    learner_id: Optional[str] = None,
    **kwargs: Any
) -> None:
    """
    Log a metric event.

    Respects FEATURE_METRICS_LOGGING_ENABLED; when disabled nothing is logged.

    Args:
        event_type: Type of event (e.g., "tool_call", "handshake", "session_invalidated")
        learner_id: Learner the activity belongs to, if any (will be sanitized)
        **kwargs: Additional metadata to log (only non-sensitive data)
    """
    # Import here to avoid circular dependencies
    from tutor_mcp.modules.config import config_manager
    from tutor_mcp.core.log_sanitizer import sanitize_for_logging

    if not config_manager.app_settings.feature_metrics_logging_enabled:
        return

    sanitized_learner = sanitize_for_logging(learner_id) if learner_id else "-"

    parts = [f"[METRIC] [{sanitized_learner}] {event_type}"]

    if kwargs:
        metadata_parts = [
            f"{key}={sanitize_for_logging(value)}"
            for key, value in kwargs.items()
        ]
        parts.append(" ".join(metadata_parts))

    logger.info(" ".join(parts))
