"""Data models for request audit records."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class SanitizedRequest:
    """Loggable projection of an inbound generation request."""

    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    stream: bool | None = None
    messages: list[Any] = field(default_factory=list)
    system: str | list[Any] | None = None
    tools: list[dict[str, Any]] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "model": self.model,
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "stream": self.stream,
                "system": self.system,
                "messages": self.messages,
                "tools": self.tools,
            }
        )


@dataclass
class ResponseSummary:
    """Summary of a generation response, built directly or from a stream."""

    id: str | None = None
    model: str | None = None
    role: str | None = None
    content: list[Any] | None = None
    full_text: str | None = None
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "model": self.model,
                "role": self.role,
                "content": self.content,
                "fullText": self.full_text,
                "stop_reason": self.stop_reason,
                "stop_sequence": self.stop_sequence,
                "usage": self.usage,
            }
        )


@dataclass
class LogRecord:
    """One audited generation request and its outcome."""

    request: SanitizedRequest
    session_id: str = "unknown"
    preset: str | None = None
    response: ResponseSummary = field(default_factory=ResponseSummary)
    duration_ms: int = 0
    error: dict[str, Any] | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        """Convert the record to a dictionary for JSON serialization."""
        return _compact(
            {
                "timestamp": self.timestamp,
                "sessionId": self.session_id,
                "preset": self.preset,
                "request": self.request.to_dict(),
                "response": self.response.to_dict(),
                "duration_ms": self.duration_ms,
                "error": self.error,
            }
        )
