import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

# Ensure the project root is on sys.path for absolute imports like 'tutor_mcp.*'
project_root = Path(__file__).resolve().parents[2]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from tutor_mcp.modules.config.config_manager import AppSettings  # noqa: E402

BASE_URL = "http://tutor.test"


def text_result(text: str) -> Dict[str, Any]:
    """MCP tools/call result carrying one text part."""
    return {"content": [{"type": "text", "text": text}]}


class FakeMCPServer:
    """In-process MCP server speaking the SSE + JSON-RPC dialect over httpx.MockTransport.

    ``tools`` maps tool name -> result dict, or a callable taking the
    arguments and returning one. Replies go in the POST body unless
    ``deliver_via_sse`` is set, in which case the POST gets 202 and the reply
    is pushed on the session's event stream.
    """

    def __init__(self):
        self.announce = True
        self.deliver_via_sse = False
        self.sse_status = 200
        self.endpoint_template = "/messages?sessionId={session_id}"
        self.expire_next_calls = 0
        self.tools: Dict[str, Any] = {}
        self.reply_delays: Dict[str, float] = {}

        self.sse_connections = 0
        self.requests: List[Dict[str, Any]] = []
        self.queues: Dict[str, asyncio.Queue] = {}
        self.tasks: List[asyncio.Task] = []

    # --- helpers used by tests ---

    def calls(self, method: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r.get("method") == method]

    @property
    def latest_session_id(self) -> Optional[str]:
        return f"sess-{self.sse_connections}" if self.sse_connections else None

    def push(self, session_id: str, event: str, data: str) -> None:
        self.queues[session_id].put_nowait(f"event: {event}\ndata: {data}\n\n")

    def close_stream(self, session_id: str) -> None:
        self.queues[session_id].put_nowait(None)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    # --- transport ---

    async def _stream(self, queue: asyncio.Queue):
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            yield chunk.encode("utf-8")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path == "/sse":
            return self._open_stream()
        if request.method == "POST" and request.url.path == "/messages":
            return await self._post(request)
        return httpx.Response(404, text="Not found")

    def _open_stream(self) -> httpx.Response:
        self.sse_connections += 1
        if self.sse_status != 200:
            return httpx.Response(self.sse_status, text="unavailable")
        session_id = f"sess-{self.sse_connections}"
        queue: asyncio.Queue = asyncio.Queue()
        self.queues[session_id] = queue
        if self.announce:
            endpoint = self.endpoint_template.format(session_id=session_id)
            queue.put_nowait(f"event: endpoint\ndata: {endpoint}\n\n")
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self._stream(queue))

    async def _post(self, request: httpx.Request) -> httpx.Response:
        session_id = request.url.params.get("sessionId")
        body = json.loads(request.content)
        self.requests.append(body)

        if session_id not in self.queues:
            return httpx.Response(404, text="Session not found")
        if "id" not in body:
            return httpx.Response(202, text="Accepted")
        if body["method"] == "tools/call" and self.expire_next_calls > 0:
            self.expire_next_calls -= 1
            self.queues.pop(session_id, None)
            return httpx.Response(404, text="Session not found")

        reply = self._reply(body)
        delay = 0.0
        if body["method"] == "tools/call":
            delay = self.reply_delays.get(body["params"]["arguments"].get("query", ""), 0.0)

        if self.deliver_via_sse:
            self.tasks.append(asyncio.create_task(self._deliver_later(session_id, reply, delay)))
            return httpx.Response(202, text="Accepted")
        if delay:
            await asyncio.sleep(delay)
        return httpx.Response(200, json=reply)

    async def _deliver_later(self, session_id: str, reply: Dict[str, Any], delay: float) -> None:
        await asyncio.sleep(delay)
        queue = self.queues.get(session_id)
        if queue is not None:
            queue.put_nowait(f"event: message\ndata: {json.dumps(reply)}\n\n")

    def _reply(self, body: Dict[str, Any]) -> Dict[str, Any]:
        method = body["method"]
        envelope: Dict[str, Any] = {"jsonrpc": "2.0", "id": body["id"]}
        if method == "initialize":
            envelope["result"] = {
                "protocolVersion": body["params"]["protocolVersion"],
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "fake-tutor", "version": "1.0"},
            }
        elif method == "tools/list":
            envelope["result"] = {
                "tools": [{"name": name, "description": f"{name} tool"} for name in sorted(self.tools)]
            }
        elif method == "tools/call":
            name = body["params"]["name"]
            handler = self.tools.get(name)
            if handler is None:
                envelope["error"] = {"code": -32602, "message": f"Unknown tool: {name}"}
            else:
                arguments = body["params"]["arguments"]
                envelope["result"] = handler(arguments) if callable(handler) else handler
        else:
            envelope["error"] = {"code": -32601, "message": f"Method not found: {method}"}
        return envelope


@pytest.fixture
def fake_server():
    return FakeMCPServer()


@pytest.fixture
def text_result_factory() -> Callable[[str], Dict[str, Any]]:
    return text_result


@pytest.fixture
def fast_settings() -> AppSettings:
    """Settings with short timeouts and delays so retry paths run quickly."""
    return AppSettings.model_construct(
        mcp_server_url=BASE_URL,
        mcp_handshake_timeout=0.5,
        mcp_call_timeout=2.0,
        mcp_connect_max_attempts=3,
        mcp_connect_retry_delay=0.01,
        mcp_session_retry_delay=0.01,
    )
