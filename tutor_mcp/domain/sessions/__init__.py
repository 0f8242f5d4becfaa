"""Domain models for MCP sessions."""

from .models import PendingRequest, Session, SessionState

__all__ = ["PendingRequest", "Session", "SessionState"]
