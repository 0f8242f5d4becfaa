"""MCP client for the tutoring capability server.

This module provides:
- SSE session negotiation and connection supervision
- JSON-RPC dispatch with response correlation
- The typed TutorMCPClient facade and a per-learner context registry
"""

from .client import TutorMCPClient, normalize_tool_result
from .dispatcher import RequestDispatcher
from .negotiator import SessionChannel, SessionNegotiator
from .registry import LearnerContextRegistry
from .supervisor import ConnectionSupervisor

__all__ = [
    "TutorMCPClient",
    "normalize_tool_result",
    "RequestDispatcher",
    "SessionChannel",
    "SessionNegotiator",
    "ConnectionSupervisor",
    "LearnerContextRegistry",
]
