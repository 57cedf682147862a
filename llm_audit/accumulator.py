"""Build response summaries from stream events or complete payloads."""

from collections.abc import AsyncIterable
from typing import Any

from .events import (
    ContentBlockDelta,
    ContentBlockStart,
    MessageDelta,
    MessageStart,
    SSEParser,
    StreamEvent,
)
from .models import ResponseSummary


def apply_event(event: StreamEvent, summary: ResponseSummary) -> ResponseSummary:
    """Fold one stream event into the summary and return it."""
    if isinstance(event, MessageStart):
        if summary.id is None:
            summary.id = event.id
        if summary.model is None:
            summary.model = event.model
        if summary.role is None:
            summary.role = event.role

    elif isinstance(event, ContentBlockStart):
        if event.block_type == "tool_use":
            if summary.content is None:
                summary.content = []
            summary.content.append(
                {
                    "type": "tool_use",
                    "name": event.content_block.get("name"),
                    "id": event.content_block.get("id"),
                }
            )

    elif isinstance(event, ContentBlockDelta):
        if event.text:
            summary.full_text = (summary.full_text or "") + event.text

    elif isinstance(event, MessageDelta):
        # Last value wins, no merging
        if event.usage:
            summary.usage = event.usage
        if event.stop_reason:
            summary.stop_reason = event.stop_reason
        if "stop_sequence" in event.delta:
            summary.stop_sequence = event.delta["stop_sequence"]

    return summary


class StreamAccumulator:
    """Accumulates one streaming response from raw event-stream chunks."""

    def __init__(self):
        self.summary = ResponseSummary(full_text="")
        self._parser = SSEParser()

    def feed(self, chunk: bytes | str) -> None:
        for event in self._parser.feed(chunk):
            apply_event(event, self.summary)

    def finish(self) -> ResponseSummary:
        """Parse any trailing partial line and return the summary."""
        for event in self._parser.flush():
            apply_event(event, self.summary)
        return self.summary

    async def consume(self, stream: AsyncIterable[bytes]) -> ResponseSummary:
        async for chunk in stream:
            self.feed(chunk)
        return self.finish()


def extract_text(content: Any) -> str | None:
    """Join the text of every text block, or None if there is none."""
    if not isinstance(content, list):
        return None
    text = "\n".join(
        block.get("text") or ""
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )
    return text or None


def summary_from_payload(payload: dict[str, Any]) -> ResponseSummary:
    """Summarize a complete, non-streaming response payload."""
    content = payload.get("content")
    return ResponseSummary(
        id=payload.get("id"),
        model=payload.get("model"),
        role=payload.get("role"),
        content=content,
        full_text=extract_text(content),
        stop_reason=payload.get("stop_reason"),
        stop_sequence=payload.get("stop_sequence"),
        usage=payload.get("usage"),
    )
