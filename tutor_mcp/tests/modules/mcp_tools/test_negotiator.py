"""Tests for the SSE handshake."""

import asyncio

import pytest

from tutor_mcp.domain.errors import HandshakeRejected, HandshakeTimeout
from tutor_mcp.modules.mcp_tools.negotiator import SessionNegotiator
from tutor_mcp.modules.mcp_tools.sse import SSEDecoder

BASE_URL = "http://tutor.test"


def _live_listeners():
    return [
        t for t in asyncio.all_tasks()
        if t.get_name().startswith("sse-listener") and not t.done()
    ]


class TestSSEDecoder:
    def test_dispatches_on_blank_line(self):
        decoder = SSEDecoder()
        assert decoder.decode("event: endpoint") is None
        assert decoder.decode("data: /messages?sessionId=abc") is None
        event = decoder.decode("")
        assert event.event == "endpoint"
        assert event.data == "/messages?sessionId=abc"

    def test_multiline_data_and_default_event(self):
        decoder = SSEDecoder()
        decoder.decode("data: {\"a\":")
        decoder.decode("data: 1}")
        event = decoder.decode("")
        assert event.event == "message"
        assert event.data == "{\"a\":\n1}"

    def test_comments_are_ignored(self):
        decoder = SSEDecoder()
        assert decoder.decode(": keep-alive") is None
        assert decoder.decode("") is None


class TestSessionNegotiator:
    @pytest.mark.asyncio
    async def test_relative_endpoint_is_joined_to_base(self, fake_server):
        async with fake_server.client() as http:
            negotiator = SessionNegotiator(http, handshake_timeout=1.0)
            session = await negotiator.negotiate(BASE_URL)
            try:
                assert session.session_id == "sess-1"
                assert session.command_endpoint == f"{BASE_URL}/messages?sessionId=sess-1"
                assert session.channel.is_open
            finally:
                await session.channel.aclose()
        assert fake_server.sse_connections == 1

    @pytest.mark.asyncio
    async def test_absolute_endpoint_is_used_as_is(self, fake_server):
        fake_server.endpoint_template = "http://other.test/rpc?sessionId={session_id}"
        async with fake_server.client() as http:
            session = await SessionNegotiator(http).negotiate(BASE_URL)
            await session.channel.aclose()
        assert session.command_endpoint == "http://other.test/rpc?sessionId=sess-1"

    @pytest.mark.asyncio
    async def test_announcement_without_session_id_is_rejected(self, fake_server):
        fake_server.endpoint_template = "/messages"
        async with fake_server.client() as http:
            with pytest.raises(HandshakeRejected):
                await SessionNegotiator(http, handshake_timeout=1.0).negotiate(BASE_URL)
            assert _live_listeners() == []

    @pytest.mark.asyncio
    async def test_http_error_status_is_rejected(self, fake_server):
        fake_server.sse_status = 503
        async with fake_server.client() as http:
            with pytest.raises(HandshakeRejected) as exc_info:
                await SessionNegotiator(http, handshake_timeout=1.0).negotiate(BASE_URL)
        assert "503" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_announcement_times_out_and_releases_stream(self, fake_server):
        fake_server.announce = False
        async with fake_server.client() as http:
            with pytest.raises(HandshakeTimeout):
                await SessionNegotiator(http, handshake_timeout=0.05).negotiate(BASE_URL)
            assert _live_listeners() == []

    @pytest.mark.asyncio
    async def test_stream_closed_before_announcement_is_rejected(self, fake_server):
        fake_server.announce = False

        async def close_soon():
            await asyncio.sleep(0.02)
            fake_server.close_stream("sess-1")

        async with fake_server.client() as http:
            closer = asyncio.create_task(close_soon())
            with pytest.raises(HandshakeRejected):
                await SessionNegotiator(http, handshake_timeout=1.0).negotiate(BASE_URL)
            await closer

    @pytest.mark.asyncio
    async def test_messages_are_forwarded_after_announcement(self, fake_server):
        received = []
        async with fake_server.client() as http:
            negotiator = SessionNegotiator(http, handshake_timeout=1.0, on_message=received.append)
            session = await negotiator.negotiate(BASE_URL)
            fake_server.push("sess-1", "message", '{"jsonrpc": "2.0", "id": 7, "result": {}}')
            await asyncio.sleep(0.02)
            await session.channel.aclose()
        assert received == [{"jsonrpc": "2.0", "id": 7, "result": {}}]

    @pytest.mark.asyncio
    async def test_error_event_after_ready_reports_teardown(self, fake_server):
        reasons = []
        async with fake_server.client() as http:
            session = await SessionNegotiator(http, handshake_timeout=1.0).negotiate(BASE_URL)
            session.channel.on_teardown = reasons.append
            fake_server.push("sess-1", "error", "server shutting down")
            await asyncio.sleep(0.02)
            await session.channel.aclose()
        assert len(reasons) == 1
        assert "server shutting down" in reasons[0]

    @pytest.mark.asyncio
    async def test_close_does_not_report_teardown(self, fake_server):
        reasons = []
        async with fake_server.client() as http:
            session = await SessionNegotiator(http, handshake_timeout=1.0).negotiate(BASE_URL)
            session.channel.on_teardown = reasons.append
            await session.channel.aclose()
            assert not session.channel.is_open
        assert reasons == []

    def test_resolve_endpoint(self):
        resolve = SessionNegotiator.resolve_endpoint
        assert resolve("http://h:3000/", "/messages?sessionId=1") == "http://h:3000/messages?sessionId=1"
        assert resolve("http://h:3000", "messages?sessionId=1") == "http://h:3000/messages?sessionId=1"
        assert resolve("http://h:3000", "https://x/m?sessionId=1") == "https://x/m?sessionId=1"
