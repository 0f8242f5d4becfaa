"""Domain layer - pure models and errors for the MCP client."""

from .errors import (
    ConfigurationError,
    ConnectionExhausted,
    DomainError,
    HandshakeError,
    HandshakeRejected,
    HandshakeTimeout,
    MCPClientError,
    RpcError,
    SessionInvalid,
    TransportError,
)
from .records.models import Assignment, DomainRecord, Grade, Lesson, StudyMaterial, Worksheet
from .sessions.models import PendingRequest, Session, SessionState
from .tools.models import ToolCallResult, ToolResultKind

__all__ = [
    # Errors
    "DomainError",
    "ConfigurationError",
    "MCPClientError",
    "HandshakeError",
    "HandshakeTimeout",
    "HandshakeRejected",
    "ConnectionExhausted",
    "TransportError",
    "SessionInvalid",
    "RpcError",
    # Sessions
    "Session",
    "SessionState",
    "PendingRequest",
    # Tool results
    "ToolCallResult",
    "ToolResultKind",
    # Records
    "Assignment",
    "Grade",
    "Lesson",
    "Worksheet",
    "StudyMaterial",
    "DomainRecord",
]
