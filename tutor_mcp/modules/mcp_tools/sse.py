"""Minimal ``text/event-stream`` decoding over httpx line iteration."""

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, List, Optional

DEFAULT_EVENT = "message"


@dataclass(frozen=True)
class ServerSentEvent:
    event: str
    data: str
    id: Optional[str] = None


class SSEDecoder:
    """Accumulates field lines until a blank line dispatches the event."""

    def __init__(self):
        self._event: Optional[str] = None
        self._data: List[str] = []
        self._last_id: Optional[str] = None

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            # comment / keep-alive
            return None

        field, _, value = line.partition(":")
        # Only a single leading space is stripped from the value
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self._last_id = value
        # "retry" and unknown fields are ignored
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data and self._event is None:
            return None
        event = ServerSentEvent(
            event=self._event or DEFAULT_EVENT,
            data="\n".join(self._data),
            id=self._last_id,
        )
        self._event = None
        self._data = []
        return event


async def iter_sse(lines: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
    """Yield events decoded from an async iterable of lines."""
    decoder = SSEDecoder()
    async for line in lines:
        event = decoder.decode(line)
        if event is not None:
            yield event
    # A final event without its terminating blank line is still delivered
    event = decoder.decode("")
    if event is not None:
        yield event
