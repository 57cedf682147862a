"""Shared fixtures for llm_audit tests."""

import json
from pathlib import Path
from typing import Any

import pytest

from llm_audit.config import RequestLoggerOptions
from llm_audit.interceptor import RequestLogger
from llm_audit.storage import JSONLStorage

CLAUDE_STREAM_FRAMES = [
    'event: message_start\ndata: {"type":"message_start","message":{"id":"x1","model":"m1","role":"assistant"}}\n\n',
    'event: content_block_start\ndata: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}\n\n',
    'event: content_block_delta\ndata: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hi"}}\n\n',
    'event: content_block_delta\ndata: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":" there"}}\n\n',
    'event: content_block_stop\ndata: {"type":"content_block_stop","index":0}\n\n',
    'event: message_delta\ndata: {"type":"message_delta","delta":{"stop_reason":"end_turn"},"usage":{"input_tokens":5,"output_tokens":2}}\n\n',
    'event: message_stop\ndata: {"type":"message_stop"}\n\n',
]


def read_records(path: Path) -> list[dict[str, Any]]:
    """Load every record of a JSONL log file."""
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


async def chunked(*chunks: bytes):
    for chunk in chunks:
        yield chunk


@pytest.fixture
def stream_bytes() -> bytes:
    return "".join(CLAUDE_STREAM_FRAMES).encode("utf-8")


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "api-requests.jsonl"


@pytest.fixture
def options(log_path: Path) -> RequestLoggerOptions:
    return RequestLoggerOptions(log_file_path=str(log_path))


@pytest.fixture
def storage(options: RequestLoggerOptions) -> JSONLStorage:
    return JSONLStorage(options.log_file)


@pytest.fixture
def request_logger(options: RequestLoggerOptions, storage: JSONLStorage) -> RequestLogger:
    return RequestLogger(options, storage)
