"""Domain models for MCP sessions."""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse


class SessionState(Enum):
    """Connection state of the (single) MCP session."""
    DISCONNECTED = "disconnected"
    NEGOTIATING = "negotiating"
    READY = "ready"
    FAILED = "failed"


@dataclass
class Session:
    """Negotiated session id plus the command endpoint it is bound to.

    Only ConnectionSupervisor changes ``state``.
    """
    session_id: str
    command_endpoint: str
    state: SessionState = SessionState.NEGOTIATING
    protocol_version: Optional[str] = None
    server_capabilities: Dict[str, Any] = field(default_factory=dict)
    server_info: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # SessionChannel owning the SSE subscription; closed on teardown
    channel: Optional[Any] = field(default=None, repr=False, compare=False)

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY

    @staticmethod
    def session_id_from_endpoint(endpoint: str) -> Optional[str]:
        """Extract the ``sessionId`` query parameter from an announced endpoint."""
        values = parse_qs(urlparse(endpoint).query).get("sessionId")
        if not values or not values[0].strip():
            return None
        return values[0].strip()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "session_id": self.session_id,
            "command_endpoint": self.command_endpoint,
            "state": self.state.value,
            "protocol_version": self.protocol_version,
            "server_capabilities": self.server_capabilities,
            "server_info": self.server_info,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class PendingRequest:
    """A dispatched JSON-RPC call waiting for the response with the same id."""
    id: int
    method: str
    future: "asyncio.Future[Dict[str, Any]]" = field(repr=False)
    issued_at: float = field(default_factory=time.monotonic)
    session_id: Optional[str] = None

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.issued_at) * 1000)
