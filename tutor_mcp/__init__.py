"""
Tutor MCP - client for the tutoring capability (MCP) server.

This package bridges the tutoring application to a remote MCP server over an
SSE handshake followed by JSON-RPC exchanges, and turns the server's formatted
text replies into typed records (assignments, grades, lessons, worksheets,
study materials).

Example usage:
    from tutor_mcp import TutorMCPClient

    async with TutorMCPClient() as client:
        found = await client.search(child_id, "fractions", "lessons")
        question = await client.get_specific_question(child_id, "Chapter 3 Worksheet", 7)

CLI (after pip install):
    tutor-mcp search <child-id> "fractions" --category lessons
"""

from tutor_mcp.version import VERSION

__version__ = VERSION
__all__ = [
    "TutorMCPClient",
    "LearnerContextRegistry",
    "VERSION",
    "__version__",
]


def __getattr__(name: str):
    """Lazy import to avoid loading httpx and settings at module import time."""
    if name == "TutorMCPClient":
        from tutor_mcp.modules.mcp_tools.client import TutorMCPClient
        globals()["TutorMCPClient"] = TutorMCPClient  # Cache for subsequent accesses
        return TutorMCPClient
    if name == "LearnerContextRegistry":
        from tutor_mcp.modules.mcp_tools.registry import LearnerContextRegistry
        globals()["LearnerContextRegistry"] = LearnerContextRegistry
        return LearnerContextRegistry
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
