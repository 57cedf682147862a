"""Request logger that audits generation calls without altering their responses.

Each captured request owns one RequestCapture, which moves through

    CAPTURED -> STREAMING | DIRECT | FAILED -> LOGGED

and is written to storage exactly once, whichever way the request ends.
Failures on the logging side are reported through ``logging`` and never
reach the caller.
"""

import asyncio
import json
import logging
import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .accumulator import StreamAccumulator, summary_from_payload
from .config import RequestLoggerOptions
from .models import LogRecord, ResponseSummary
from .sanitize import sanitize_request
from .storage import JSONLStorage
from .tee import UpstreamStreamError, tee

MESSAGES_PATH = "/v1/messages"


class CaptureState(Enum):
    CAPTURED = "captured"
    STREAMING = "streaming"
    DIRECT = "direct"
    FAILED = "failed"
    LOGGED = "logged"


@dataclass
class RequestCapture:
    """Pending log record of one request, owned by that request's handling path."""

    record: LogRecord
    started_at: float = field(default_factory=time.time)
    state: CaptureState = CaptureState.CAPTURED

    def elapsed_ms(self) -> int:
        return int((time.time() - self.started_at) * 1000)


def error_projection(error: BaseException) -> dict[str, Any]:
    """Loggable view of a raised exception."""
    projection: dict[str, Any] = {"message": str(error), "type": type(error).__name__}
    code = getattr(error, "code", None)
    if code is not None:
        projection["code"] = code if isinstance(code, (int, str)) else str(code)
    projection["stack"] = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )
    return projection


def payload_error(error: Any) -> dict[str, Any]:
    """Loggable view of the ``error`` field of a response payload."""
    if isinstance(error, dict):
        return {"type": error.get("type"), "message": error.get("message")}
    return {"type": None, "message": str(error)}


class RequestLogger:
    """Captures generation requests and their responses into a JSONL log."""

    def __init__(self, options: RequestLoggerOptions, storage: JSONLStorage):
        self.options = options
        self.storage = storage
        self._tasks: set[asyncio.Task] = set()

    def capture(
        self,
        path: str,
        body: Any,
        session_id: str | None = None,
        preset: str | None = None,
    ) -> RequestCapture | None:
        """Inbound hook. Returns None for requests that are not audited."""
        if not self.options.enabled or not path.endswith(MESSAGES_PATH):
            return None

        try:
            request = sanitize_request(body if isinstance(body, dict) else {}, self.options)
        except Exception as e:
            logging.error(f"Failed to capture request, it will not be logged: {e}", exc_info=True)
            return None

        record = LogRecord(request=request, session_id=session_id or "unknown", preset=preset)
        return RequestCapture(record=record)

    async def on_send(self, capture: RequestCapture | None, payload: Any) -> Any:
        """Outbound hook. Returns the payload, or an identical copy of a stream."""
        if capture is None or capture.state is not CaptureState.CAPTURED:
            return payload

        if hasattr(payload, "__aiter__"):
            capture.state = CaptureState.STREAMING
            logging.info("Record stream LLM Call")
            primary, secondary = tee(payload)
            self._spawn(self._collect_stream(capture, secondary))
            return primary

        capture.state = CaptureState.DIRECT
        logging.info("Record non-stream LLM Call")

        data = payload
        if isinstance(payload, (bytes, str)):
            try:
                data = json.loads(payload)
            except (json.JSONDecodeError, UnicodeDecodeError):
                data = None

        if isinstance(data, dict):
            if data.get("error"):
                capture.record.error = payload_error(data["error"])
            else:
                capture.record.response = summary_from_payload(data)

        await self._finalize(capture)
        return payload

    async def on_error(self, capture: RequestCapture | None, error: BaseException) -> None:
        """Error hook. The error itself is left for the caller to propagate."""
        if capture is None:
            return
        if capture.state is not CaptureState.CAPTURED:
            logging.debug(f"Ignoring error for request already in state {capture.state.value}")
            return

        capture.state = CaptureState.FAILED
        capture.record.error = error_projection(error)
        await self._finalize(capture)

    async def drain(self) -> None:
        """Wait for all background stream collectors to finish."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _spawn(self, coro) -> None:
        # Keep a strong reference until the task is done
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _collect_stream(self, capture: RequestCapture, stream) -> None:
        accumulator = StreamAccumulator()
        capture.record.response = accumulator.summary
        try:
            await accumulator.consume(stream)
        except UpstreamStreamError as e:
            # A failed request is logged with its error instead of a summary
            capture.record.response = ResponseSummary()
            capture.record.error = error_projection(e.__cause__ or e)
        except Exception as e:
            logging.error(f"Error collecting streaming response: {e}", exc_info=True)
        finally:
            await self._finalize(capture)

    async def _finalize(self, capture: RequestCapture) -> None:
        if capture.state is CaptureState.LOGGED:
            return
        capture.state = CaptureState.LOGGED
        capture.record.duration_ms = capture.elapsed_ms()
        try:
            await asyncio.to_thread(self.storage.append, capture.record)
        except Exception as e:
            logging.error(f"Failed to write request log record: {e}", exc_info=True)
