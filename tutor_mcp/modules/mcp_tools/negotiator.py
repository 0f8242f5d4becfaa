"""SSE handshake with the capability server.

The server answers ``GET {base}/sse`` with a long-lived event stream whose
first ``endpoint`` event names the per-session command path, e.g.
``/messages?sessionId=abc123``. The stream then stays open: JSON-RPC replies
may arrive on it as ``message`` events, and its closing means the session is
gone.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import httpx

from tutor_mcp.core.log_sanitizer import preview_for_logging, sanitize_for_logging
from tutor_mcp.domain.errors import HandshakeRejected, HandshakeTimeout
from tutor_mcp.domain.sessions.models import Session

from .sse import iter_sse

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], None]
TeardownHandler = Callable[[str], None]


class SessionChannel:
    """Owns the background task reading one SSE subscription.

    ``announced`` resolves with the raw endpoint announcement or fails with
    ``HandshakeRejected``. Once announced, a server-side close or ``error``
    event is reported through ``on_teardown``.
    """

    def __init__(
        self,
        url: str,
        http_client: httpx.AsyncClient,
        connect_timeout: float,
        on_message: Optional[MessageHandler] = None,
    ):
        self.url = url
        self._http = http_client
        self._connect_timeout = connect_timeout
        self._on_message = on_message
        self.on_teardown: Optional[TeardownHandler] = None
        self.announced: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._task is not None and not self._task.done() and not self._closing

    def start(self) -> None:
        self._task = asyncio.create_task(self._listen(), name=f"sse-listener:{self.url}")

    async def _listen(self) -> None:
        # No read timeout: the stream idles between server pushes
        timeout = httpx.Timeout(self._connect_timeout, read=None)
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        try:
            async with self._http.stream("GET", self.url, headers=headers, timeout=timeout) as response:
                if not response.is_success:
                    self._ended(f"SSE endpoint returned HTTP {response.status_code}")
                    return
                async for event in iter_sse(response.aiter_lines()):
                    if not self._handle_event(event.event, event.data):
                        return
            self._ended("SSE stream closed by server")
        except httpx.HTTPError as e:
            self._ended(f"SSE stream failed: {sanitize_for_logging(str(e)) or type(e).__name__}")
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected error in SSE listener for {self.url}: {e}", exc_info=True)
            self._ended(f"SSE listener crashed: {type(e).__name__}")

    def _handle_event(self, event: str, data: str) -> bool:
        """Process one event; returns False when the listener should stop."""
        if event == "endpoint":
            if self.announced.done():
                logger.warning(f"Ignoring repeated endpoint announcement: {preview_for_logging(data)}")
                return True
            endpoint = data.strip()
            if Session.session_id_from_endpoint(endpoint) is None:
                self.announced.set_exception(
                    HandshakeRejected(f"Endpoint announcement has no sessionId: {preview_for_logging(endpoint)}")
                )
                return False
            self.announced.set_result(endpoint)
            return True

        if event == "error":
            self._ended(f"Server sent error event: {preview_for_logging(data)}")
            return False

        if event == "message":
            if not self.announced.done():
                logger.debug("Dropping SSE message received before endpoint announcement")
                return True
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON in SSE message: {preview_for_logging(data)}")
                return True
            if self._on_message is not None:
                self._on_message(payload)
            return True

        logger.debug(f"Ignoring SSE event type {sanitize_for_logging(event)}")
        return True

    def _ended(self, reason: str) -> None:
        if not self.announced.done():
            self.announced.set_exception(HandshakeRejected(reason))
            return
        if self._closing:
            return
        logger.warning(f"SSE channel {self.url} ended: {reason}")
        if self.on_teardown is not None:
            self.on_teardown(reason)

    def close(self) -> None:
        """Cancel the listener; the stream context releases the connection."""
        self._closing = True
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        if not self.announced.done():
            self.announced.cancel()

    async def aclose(self) -> None:
        """Cancel the listener and wait until the stream has been released."""
        self.close()
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait({task})


class SessionNegotiator:
    """Performs the SSE handshake and returns a Session bound to its channel."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        handshake_timeout: float = 10.0,
        sse_path: str = "/sse",
        on_message: Optional[MessageHandler] = None,
    ):
        self.http_client = http_client
        self.handshake_timeout = handshake_timeout
        self.sse_path = sse_path if sse_path.startswith("/") else f"/{sse_path}"
        self.on_message = on_message

    @staticmethod
    def resolve_endpoint(base_url: str, endpoint: str) -> str:
        """Absolute announcements are used as-is; relative paths are appended to the base URL."""
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        return base_url.rstrip("/") + endpoint

    def _forward(self, payload: Any) -> None:
        if self.on_message is not None:
            self.on_message(payload)

    async def negotiate(self, base_url: str) -> Session:
        url = base_url.rstrip("/") + self.sse_path
        channel = SessionChannel(url, self.http_client, self.handshake_timeout, on_message=self._forward)
        logger.info(f"Opening SSE handshake to {url}")
        channel.start()

        try:
            endpoint = await asyncio.wait_for(channel.announced, timeout=self.handshake_timeout)
        except asyncio.TimeoutError:
            await channel.aclose()
            raise HandshakeTimeout(
                f"No endpoint announcement from {url} within {self.handshake_timeout}s",
                code="HANDSHAKE_TIMEOUT",
            )
        except HandshakeRejected:
            await channel.aclose()
            raise
        except asyncio.CancelledError:
            channel.close()
            raise

        session = Session(
            session_id=Session.session_id_from_endpoint(endpoint),
            command_endpoint=self.resolve_endpoint(base_url, endpoint),
            channel=channel,
        )
        logger.info(f"SSE handshake complete, session {sanitize_for_logging(session.session_id)}")
        return session
