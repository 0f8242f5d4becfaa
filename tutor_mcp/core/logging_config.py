"""Structured logging setup.

Provides:
- JSON-lines log records carrying OpenTelemetry trace/span identifiers
- Config-derived log level (LOG_LEVEL)
- Optional file output (APP_LOG_DIR/app.jsonl) next to a console handler
- HTTPX instrumentation hook so outbound MCP calls show up in traces
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider

from tutor_mcp.version import VERSION

LOG_FILE_NAME = "app.jsonl"

# Loggers that are chatty at DEBUG and rarely useful when diagnosing the client
_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3.connectionpool")

_EXCLUDED_RECORD_KEYS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module", "lineno",
    "funcName", "created", "msecs", "relativeCreated", "thread", "threadName", "processName", "process",
    "exc_info", "exc_text", "stack_info", "taskName", "getMessage",
}


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        span = trace.get_current_span()
        trace_id = span_id = None
        if span and span.is_recording():
            sc = span.get_span_context()
            if sc.is_valid:
                trace_id = f"{sc.trace_id:032x}"
                span_id = f"{sc.span_id:016x}"

        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process_id": os.getpid(),
        }
        if trace_id:
            entry["trace_id"] = trace_id
        if span_id:
            entry["span_id"] = span_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Structured context passed through `extra=` (e.g. mcp_method, mcp_request_id)
        for k, v in record.__dict__.items():
            if k not in _EXCLUDED_RECORD_KEYS:
                entry[f"extra_{k}"] = v
        return json.dumps(entry, default=str)


def _resolve_log_level(level_name: Optional[str]) -> int:
    if level_name is None:
        try:
            from tutor_mcp.modules.config import config_manager  # local import to avoid circular

            level_name = config_manager.app_settings.log_level
        except Exception:  # noqa: BLE001
            level_name = os.getenv("LOG_LEVEL", "INFO")
    level = getattr(logging, str(level_name).upper(), None)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(
    level_name: Optional[str] = None,
    log_dir: Optional[str] = None,
    service_name: str = "tutor-mcp-client",
) -> Optional[Path]:
    """Install JSON file logging (when a log dir is known) and console logging.

    Returns the path of the JSON-lines file, or None when logging to console only.
    """
    level = _resolve_log_level(level_name)
    if log_dir is None:
        log_dir = os.getenv("APP_LOG_DIR")

    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({SERVICE_NAME: service_name, SERVICE_VERSION: VERSION}))
    )

    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.setLevel(level)

    log_file: Optional[Path] = None
    if log_dir:
        logs_dir = Path(log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_file = logs_dir / LOG_FILE_NAME
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(level)
        root.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    console.setLevel(level if log_file is None else logging.WARNING)
    root.addHandler(console)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    return log_file


def instrument_httpx() -> None:
    """Trace outbound httpx requests (SSE handshake and JSON-RPC posts)."""
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()
