"""JSON-RPC request dispatch and response correlation.

Every call gets an id from a per-dispatcher counter that is never reset, and
waits on a PendingRequest keyed by that id. A response arrives either in the
HTTP body of the POST or later as an SSE ``message`` event routed through
``resolve``; either way it is matched purely by id.
"""

import asyncio
import itertools
import logging
import re
from typing import Any, Dict, Optional

import httpx

from tutor_mcp.core.log_sanitizer import preview_for_logging, sanitize_for_logging
from tutor_mcp.core.metrics_logger import log_metric
from tutor_mcp.domain.errors import HandshakeRejected, RpcError, SessionInvalid, TransportError
from tutor_mcp.domain.sessions.models import PendingRequest, Session

from .supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

# HTTP statuses meaning the command endpoint no longer knows the session
_SESSION_GONE_STATUSES = {404, 410}

_SESSION_ERROR_RE = re.compile(
    r"(?:invalid|unknown|expired|no active)[\w\s-]*session"
    r"|session[\w\s-]*(?:not found|invalid|expired|unknown)",
    re.IGNORECASE,
)


def is_session_error(message: Optional[str]) -> bool:
    """True when an error message says the session id is no longer recognised."""
    return bool(message) and _SESSION_ERROR_RE.search(message) is not None


class RequestDispatcher:
    """Sends JSON-RPC requests over the supervisor's session."""

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        http_client: httpx.AsyncClient,
        call_timeout: float = 30.0,
        session_retry_delay: float = 1.0,
        protocol_version: str = "2024-11-05",
        client_info: Optional[Dict[str, str]] = None,
    ):
        self.supervisor = supervisor
        self.http_client = http_client
        self.call_timeout = call_timeout
        self.session_retry_delay = session_retry_delay
        self.protocol_version = protocol_version
        self.client_info = client_info or {"name": "tutor-mcp-client", "version": "0.0.0"}
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def next_id(self) -> int:
        return next(self._ids)

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None, *, idempotent: bool = False) -> Any:
        """Dispatch ``method`` and return its JSON-RPC result.

        Idempotent calls get exactly one transparent retry on a fresh session
        after ``SessionInvalid``; everything else surfaces immediately.
        """
        retried = False
        while True:
            session = await self.supervisor.ensure_connected()
            try:
                return await self._send_once(session, method, params)
            except SessionInvalid as e:
                await self.supervisor.invalidate(session, e.message)
                if not idempotent or retried:
                    raise
                retried = True
                logger.info(
                    f"Retrying {method} once on a fresh session in {self.session_retry_delay}s "
                    f"({sanitize_for_logging(e.message)})"
                )
                log_metric("rpc_retry", None, method=method)
                await asyncio.sleep(self.session_retry_delay)

    async def _send_once(self, session: Session, method: str, params: Optional[Dict[str, Any]]) -> Any:
        request_id = self.next_id()
        pending = PendingRequest(
            id=request_id,
            method=method,
            future=asyncio.get_running_loop().create_future(),
            session_id=session.session_id,
        )
        self._pending[request_id] = pending
        envelope = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method, "params": params or {}}
        logger.debug(f"-> {method} id={request_id}", extra={"mcp_method": method, "mcp_request_id": request_id})

        try:
            message = await asyncio.wait_for(self._exchange(session, pending, envelope), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            raise TransportError(
                f"{method} id={request_id} timed out after {self.call_timeout}s", code="TIMEOUT"
            ) from None
        finally:
            # Removed before any late response can be routed to it
            self._pending.pop(request_id, None)
            if pending.future.done() and not pending.future.cancelled():
                pending.future.exception()

        logger.debug(
            f"<- {method} id={request_id} in {pending.elapsed_ms()}ms",
            extra={"mcp_method": method, "mcp_request_id": request_id},
        )
        return self._unwrap(method, request_id, message)

    async def _exchange(self, session: Session, pending: PendingRequest, envelope: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._post(session, envelope)
        body = self._decode_body(response)
        if isinstance(body, dict) and body.get("id") == pending.id:
            return body
        if body is not None:
            self.resolve(body)
        # 202 Accepted: the reply comes over the SSE channel
        return await pending.future

    async def _post(self, session: Session, envelope: Dict[str, Any]) -> httpx.Response:
        method = envelope["method"]
        try:
            response = await self.http_client.post(
                session.command_endpoint,
                json=envelope,
                headers={"Accept": "application/json, text/event-stream"},
                timeout=self.call_timeout,
            )
        except httpx.ConnectError as e:
            self.supervisor.mark_disconnected(session, f"connection failed during {method}")
            raise TransportError(f"Could not reach MCP server for {method}: {e}", code="CONNECTION_FAILED") from e
        except httpx.TimeoutException as e:
            raise TransportError(f"HTTP timeout during {method}: {e}", code="TIMEOUT") from e
        except httpx.RequestError as e:
            raise TransportError(f"HTTP request for {method} failed: {e}", code="REQUEST_FAILED") from e

        self._raise_for_status(method, response)
        return response

    def _raise_for_status(self, method: str, response: httpx.Response) -> None:
        status = response.status_code
        if response.is_success:
            return
        text = response.text
        if status in _SESSION_GONE_STATUSES or (status == 400 and is_session_error(text)):
            raise SessionInvalid(
                f"Session rejected by server (HTTP {status}) during {method}: {preview_for_logging(text)}",
                code="SESSION_INVALID",
            )
        if status >= 500:
            raise TransportError(
                f"MCP server error HTTP {status} during {method}", code="SERVER_ERROR", status_code=status
            )
        body = self._decode_body(response)
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            # A JSON-RPC error delivered with a 4xx status is classified like any other
            self._unwrap(method, body.get("id"), body)
        raise TransportError(
            f"MCP server returned HTTP {status} during {method}: {preview_for_logging(text)}",
            code="HTTP_ERROR",
            status_code=status,
        )

    @staticmethod
    def _decode_body(response: httpx.Response) -> Optional[Any]:
        if response.status_code == 202 or not response.content or not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError:
            # e.g. a plain "Accepted"
            return None

    @staticmethod
    def _unwrap(method: str, request_id: Any, message: Dict[str, Any]) -> Any:
        error = message.get("error")
        if error is None:
            return message.get("result")
        if isinstance(error, dict):
            error_message = str(error.get("message") or "Unknown JSON-RPC error")
            code, data = error.get("code"), error.get("data")
        else:
            error_message, code, data = str(error), None, None
        if is_session_error(error_message):
            raise SessionInvalid(error_message, code="SESSION_INVALID")
        logger.debug(f"{method} id={request_id} returned JSON-RPC error {code}: {sanitize_for_logging(error_message)}")
        raise RpcError(error_message, code=code, data=data)

    def resolve(self, message: Any) -> None:
        """Route a JSON-RPC message from the SSE channel (or a POST body) to its caller."""
        if isinstance(message, list):
            for item in message:
                self.resolve(item)
            return
        if not isinstance(message, dict):
            logger.warning(f"Dropping non-object JSON-RPC message: {preview_for_logging(message)}")
            return
        if "method" in message:
            logger.debug(f"Ignoring server-initiated {sanitize_for_logging(message.get('method'))}")
            return

        request_id = message.get("id")
        if isinstance(request_id, str) and request_id.isdigit():
            request_id = int(request_id)
        pending = self._pending.get(request_id)
        if pending is None or pending.future.done():
            logger.warning(f"Dropping response for unknown or timed out request id={sanitize_for_logging(request_id)}")
            return
        pending.future.set_result(message)

    def abandon_session(self, session: Session, reason: str) -> None:
        """Fail calls still waiting on ``session``'s SSE channel."""
        for pending in list(self._pending.values()):
            if pending.session_id == session.session_id and not pending.future.done():
                pending.future.set_exception(SessionInvalid(f"Session closed while awaiting {pending.method}: {reason}"))

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None, session: Optional[Session] = None) -> None:
        """Send a notification (no id, no response expected)."""
        if session is None:
            session = await self.supervisor.ensure_connected()
        envelope = {"jsonrpc": JSONRPC_VERSION, "method": method, "params": params or {}}
        await self._post(session, envelope)

    async def initialize(self, session: Session) -> None:
        """Run the MCP initialize exchange on a freshly negotiated session."""
        result = await self._send_once(
            session,
            "initialize",
            {
                "protocolVersion": self.protocol_version,
                "capabilities": {},
                "clientInfo": self.client_info,
            },
        )
        if not isinstance(result, dict):
            raise HandshakeRejected("initialize returned no result object")

        server_version = result.get("protocolVersion") or self.protocol_version
        if server_version != self.protocol_version:
            logger.warning(f"MCP server negotiated protocol {server_version}, client requested {self.protocol_version}")
        session.protocol_version = server_version
        session.server_capabilities = result.get("capabilities") or {}
        session.server_info = result.get("serverInfo") or {}

        await self.notify("notifications/initialized", {}, session=session)
        server_name = sanitize_for_logging(session.server_info.get("name", "unknown"))
        logger.info(f"MCP initialize complete with {server_name} (protocol {server_version})")
