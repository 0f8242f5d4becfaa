"""Connection lifecycle for the single MCP session of a client.

``ensure_connected`` is single-flighted: while a handshake is running every
caller awaits the same task, so concurrent first calls open exactly one SSE
subscription. Only this class changes ``Session.state``.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from tutor_mcp.core.log_sanitizer import sanitize_for_logging
from tutor_mcp.core.metrics_logger import log_metric
from tutor_mcp.domain.errors import ConnectionExhausted, DomainError, HandshakeRejected
from tutor_mcp.domain.sessions.models import Session, SessionState

from .negotiator import SessionNegotiator

logger = logging.getLogger(__name__)

SessionInitializer = Callable[[Session], Awaitable[None]]


class ConnectionSupervisor:
    """Owns the state machine, retry policy and teardown of the session."""

    def __init__(
        self,
        negotiator: SessionNegotiator,
        base_url: str,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        initializer: Optional[SessionInitializer] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.negotiator = negotiator
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.initializer = initializer

        self.state = SessionState.DISCONNECTED
        self.session: Optional[Session] = None
        self.last_error: Optional[BaseException] = None
        self.handshake_count = 0
        self._inflight: Optional[asyncio.Task] = None
        # Called with (session, reason) whenever a live session is dropped
        self.on_session_lost: Optional[Callable[[Session, str], None]] = None

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY and self.session is not None

    def _transition(self, state: SessionState, session: Optional[Session] = None) -> None:
        if state is not self.state:
            logger.debug(f"MCP connection {self.state.value} -> {state.value}")
        self.state = state
        target = session if session is not None else self.session
        if target is not None:
            target.state = state

    async def ensure_connected(self) -> Session:
        """Return the live session, negotiating one if needed."""
        if self.is_ready:
            return self.session

        if self._inflight is None:
            self._inflight = asyncio.create_task(self._connect_with_retry(), name="mcp-connect")
            self._inflight.add_done_callback(self._clear_inflight)

        # shield: one waiter being cancelled must not cancel the shared handshake
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved even when every waiter was cancelled
            task.exception()

    async def _connect_with_retry(self) -> Session:
        started = time.monotonic()
        self._transition(SessionState.NEGOTIATING)

        for attempt in range(1, self.max_attempts + 1):
            await self._teardown("starting a new handshake")
            self.handshake_count += 1
            try:
                session = await self.negotiator.negotiate(self.base_url)
                self.session = session
                self._transition(SessionState.NEGOTIATING, session)
                if session.channel is not None:
                    session.channel.on_teardown = lambda reason, s=session: self.mark_disconnected(s, reason)
                if self.initializer is not None:
                    await self.initializer(session)
                if not self._is_current(session):
                    raise HandshakeRejected("SSE channel closed during initialization")
            except DomainError as e:
                self.last_error = e
                logger.warning(
                    f"MCP handshake attempt {attempt}/{self.max_attempts} to {self.base_url} failed: "
                    f"{type(e).__name__}: {sanitize_for_logging(e.message)}"
                )
            except Exception as e:  # noqa: BLE001
                self.last_error = e
                logger.error(
                    f"Unexpected error during MCP handshake attempt {attempt}/{self.max_attempts}: {e}",
                    exc_info=True,
                )
            else:
                self._transition(SessionState.READY, session)
                logger.info(f"MCP session ready after {attempt} attempt(s) against {self.base_url}")
                log_metric(
                    "handshake", None, attempts=attempt, outcome="ready",
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
                return session

            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_delay)

        await self._teardown("handshake attempts exhausted")
        self._transition(SessionState.FAILED)
        log_metric("handshake", None, attempts=self.max_attempts, outcome="exhausted")
        raise ConnectionExhausted(
            f"Could not establish MCP session with {self.base_url} after {self.max_attempts} attempts",
            attempts=self.max_attempts,
        ) from self.last_error

    async def _teardown(self, reason: str) -> None:
        session, self.session = self.session, None
        if session is None:
            return
        logger.debug(f"Tearing down MCP session {sanitize_for_logging(session.session_id)}: {reason}")
        if session.state is not SessionState.FAILED:
            session.state = SessionState.DISCONNECTED
        if self.on_session_lost is not None:
            self.on_session_lost(session, reason)
        if session.channel is not None:
            await session.channel.aclose()

    def _is_current(self, session: Optional[Session]) -> bool:
        return session is not None and session is self.session

    def _drop(self, session: Session, reason: str) -> None:
        self.session = None
        session.state = SessionState.DISCONNECTED
        if self.on_session_lost is not None:
            self.on_session_lost(session, reason)
        # A handshake in flight keeps the supervisor NEGOTIATING
        if self._inflight is None:
            self._transition(SessionState.DISCONNECTED)

    async def invalidate(self, session: Optional[Session], reason: str) -> None:
        """Drop ``session`` if it is still the current one; stale reports are ignored."""
        if not self._is_current(session):
            logger.debug(f"Ignoring invalidation of stale session: {reason}")
            return
        logger.warning(f"MCP session {sanitize_for_logging(session.session_id)} invalidated: {reason}")
        log_metric("session_invalidated", None, reason=reason)
        self._drop(session, reason)
        if session.channel is not None:
            await session.channel.aclose()

    def mark_disconnected(self, session: Optional[Session], reason: str) -> None:
        """Synchronous invalidation used from the SSE listener and transport errors."""
        if not self._is_current(session):
            return
        logger.warning(f"MCP session {sanitize_for_logging(session.session_id)} disconnected: {reason}")
        log_metric("session_invalidated", None, reason=reason)
        self._drop(session, reason)
        if session.channel is not None:
            session.channel.close()

    async def disconnect(self) -> None:
        """Tear down the session and any handshake still in flight."""
        inflight, self._inflight = self._inflight, None
        if inflight is not None and not inflight.done():
            inflight.cancel()
            await asyncio.wait({inflight})
        await self._teardown("explicit disconnect")
        self._transition(SessionState.DISCONNECTED)
