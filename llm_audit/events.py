"""Decode server-sent event frames into typed stream events.

Claude streaming format:
    event: message_start
    data: {"type": "message_start", "message": {"id": "xxx", "model": "..."}}

    event: content_block_delta
    data: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}}

Only ``data:`` lines are decoded. A frame whose payload is not valid JSON,
or whose ``type`` is not one of the known events, becomes an UnknownEvent.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterator
from dataclasses import dataclass, field
from typing import Any

DATA_PREFIX = "data: "


@dataclass(frozen=True)
class MessageStart:
    id: str | None = None
    model: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class ContentBlockStart:
    index: int = 0
    content_block: dict[str, Any] = field(default_factory=dict)

    @property
    def block_type(self) -> str | None:
        return self.content_block.get("type")


@dataclass(frozen=True)
class ContentBlockDelta:
    index: int = 0
    delta: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str | None:
        text = self.delta.get("text")
        return text if isinstance(text, str) else None


@dataclass(frozen=True)
class MessageDelta:
    delta: dict[str, Any] = field(default_factory=dict)
    usage: dict[str, Any] | None = None

    @property
    def stop_reason(self) -> str | None:
        return self.delta.get("stop_reason")


@dataclass(frozen=True)
class UnknownEvent:
    """Anything not recognized, including malformed frames (type is None)."""

    type: str | None = None
    data: Any = None


StreamEvent = MessageStart | ContentBlockStart | ContentBlockDelta | MessageDelta | UnknownEvent


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def decode_event(payload: str) -> StreamEvent:
    """Decode the payload of one ``data:`` frame. Never raises."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logging.debug("Skipping malformed stream frame: %.80s", payload)
        return UnknownEvent(data=payload)

    if not isinstance(data, dict):
        return UnknownEvent(data=data)

    event_type = data.get("type")

    if event_type == "message_start":
        message = _as_dict(data.get("message"))
        return MessageStart(
            id=message.get("id"),
            model=message.get("model"),
            role=message.get("role"),
        )

    elif event_type == "content_block_start":
        return ContentBlockStart(
            index=data.get("index", 0),
            content_block=_as_dict(data.get("content_block")),
        )

    elif event_type == "content_block_delta":
        return ContentBlockDelta(
            index=data.get("index", 0),
            delta=_as_dict(data.get("delta")),
        )

    elif event_type == "message_delta":
        usage = data.get("usage")
        return MessageDelta(
            delta=_as_dict(data.get("delta")),
            usage=usage if isinstance(usage, dict) else None,
        )

    return UnknownEvent(type=event_type if isinstance(event_type, str) else None, data=data)


class SSEParser:
    """Incremental parser for one event stream.

    Chunks may hold any number of lines, and a line (or a multibyte
    character) may be split across chunks. Use a fresh parser per stream.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> Iterator[StreamEvent]:
        """Yield the events of every line completed by this chunk."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            event = self._parse_line(line)
            if event is not None:
                yield event

    def flush(self) -> Iterator[StreamEvent]:
        """Yield the event of a trailing line left without a newline."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        event = self._parse_line(tail)
        if event is not None:
            yield event

    @staticmethod
    def _parse_line(line: str) -> StreamEvent | None:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        return decode_event(line[len(DATA_PREFIX):])


async def aiter_events(stream: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode an async byte stream into stream events, in arrival order."""
    parser = SSEParser()
    async for chunk in stream:
        for event in parser.feed(chunk):
            yield event
    for event in parser.flush():
        yield event
