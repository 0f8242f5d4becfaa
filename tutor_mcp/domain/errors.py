"""Domain-level errors and exceptions."""

from typing import Optional


class DomainError(Exception):
    """Base domain error."""
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(DomainError):
    """Configuration error."""
    pass


class MCPClientError(DomainError):
    """Base class for failures talking to the capability server."""
    pass


class HandshakeError(MCPClientError):
    """The SSE handshake did not produce a usable session."""
    pass


class HandshakeTimeout(HandshakeError):
    """No endpoint announcement arrived within the handshake timeout."""
    pass


class HandshakeRejected(HandshakeError):
    """The server refused the stream, closed it early, or announced a bad endpoint."""
    pass


class ConnectionExhausted(MCPClientError):
    """Every handshake attempt failed; raised after the last attempt."""
    def __init__(self, message: str, attempts: int, code: Optional[str] = "CONNECTION_EXHAUSTED"):
        super().__init__(message, code=code)
        self.attempts = attempts


class TransportError(MCPClientError):
    """Network-level failure (refused, reset, timeout, 5xx) on an individual call."""
    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, code=code)
        self.status_code = status_code


class SessionInvalid(MCPClientError):
    """The server no longer recognizes the session id."""
    pass


class RpcError(MCPClientError):
    """JSON-RPC error object returned for a call."""
    def __init__(self, message: str, code: Optional[int] = None, data: Optional[object] = None):
        super().__init__(message, code=str(code) if code is not None else None)
        self.rpc_code = code
        self.data = data
