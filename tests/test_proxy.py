"""Tests for the proxy server."""

import gzip
import json

import httpx
import pytest
from conftest import read_records

from llm_audit.proxy import create_app

TARGET = "https://upstream.test"


class Upstream:
    """Records forwarded requests and answers with a canned response."""

    def __init__(self, response: httpx.Response | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


def make_client(upstream: Upstream, request_logger) -> httpx.AsyncClient:
    upstream_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app = create_app(TARGET, request_logger, client=upstream_client)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://proxy.test")


class TestProxy:
    async def test_health(self, request_logger):
        async with make_client(Upstream(), request_logger) as client:
            response = await client.get("/health")

        assert response.json() == {"status": "ok"}

    async def test_non_generation_request_not_logged(self, request_logger, log_path):
        upstream = Upstream(httpx.Response(200, json={"data": [{"id": "m1"}]}))

        async with make_client(upstream, request_logger) as client:
            response = await client.get("/v1/models", params={"limit": "5"})
        await request_logger.drain()

        assert response.json() == {"data": [{"id": "m1"}]}
        assert str(upstream.requests[0].url) == f"{TARGET}/v1/models?limit=5"
        assert read_records(log_path) == []

    async def test_non_streaming_message(self, request_logger, log_path):
        payload = {
            "id": "msg_1",
            "type": "message",
            "role": "assistant",
            "model": "m1",
            "content": [{"type": "text", "text": "Hello!"}],
            "stop_reason": "end_turn",
            "stop_sequence": None,
            "usage": {"input_tokens": 3, "output_tokens": 2},
        }
        upstream = Upstream(httpx.Response(200, json=payload))
        body = {"model": "m1", "max_tokens": 64, "messages": [{"role": "user", "content": "hello"}]}

        async with make_client(upstream, request_logger) as client:
            response = await client.post(
                "/v1/messages",
                json=body,
                headers={"x-api-key": "sk-test", "x-session-id": "s1", "x-preset": "fast"},
            )

        assert response.status_code == 200
        assert response.json() == payload
        forwarded = upstream.requests[0]
        assert json.loads(forwarded.content) == body
        assert forwarded.headers["x-api-key"] == "sk-test"

        [record] = read_records(log_path)
        assert record["sessionId"] == "s1"
        assert record["preset"] == "fast"
        assert record["request"] == {"model": "m1", "max_tokens": 64, "messages": body["messages"]}
        assert record["response"]["fullText"] == "Hello!"

    async def test_upstream_headers_relayed(self, request_logger):
        upstream = Upstream(
            httpx.Response(
                200,
                headers={"request-id": "req_123", "content-type": "application/json"},
                content=b'{"id": "msg_1",  "content": []}',
            )
        )

        async with make_client(upstream, request_logger) as client:
            response = await client.post("/v1/messages", json={"model": "m1", "messages": []})

        assert response.headers["request-id"] == "req_123"
        assert response.headers["content-type"] == "application/json"
        assert response.content == b'{"id": "msg_1",  "content": []}'

    async def test_upstream_error_payload(self, request_logger, log_path):
        error = {"type": "error", "error": {"type": "invalid_request_error", "message": "max_tokens required"}}
        upstream = Upstream(httpx.Response(400, json=error))

        async with make_client(upstream, request_logger) as client:
            response = await client.post("/v1/messages", json={"model": "m1", "messages": []})

        assert response.status_code == 400
        assert response.json() == error
        [record] = read_records(log_path)
        assert record["error"] == {"type": "invalid_request_error", "message": "max_tokens required"}

    async def test_streaming_message(self, request_logger, log_path, stream_bytes):
        upstream = Upstream(
            httpx.Response(200, headers={"content-type": "text/event-stream"}, content=stream_bytes)
        )
        body = {"model": "m1", "stream": True, "messages": [{"role": "user", "content": "hi"}]}

        async with make_client(upstream, request_logger) as client:
            response = await client.post("/v1/messages", json=body)
        await request_logger.drain()

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.content == stream_bytes

        [record] = read_records(log_path)
        assert record["request"]["stream"] is True
        assert record["response"]["fullText"] == "Hi there"
        assert record["response"]["usage"] == {"input_tokens": 5, "output_tokens": 2}

    async def test_compressed_stream_decoded_for_both_copies(self, request_logger, log_path, stream_bytes):
        upstream = Upstream(
            httpx.Response(
                200,
                headers={"content-type": "text/event-stream", "content-encoding": "gzip"},
                content=gzip.compress(stream_bytes),
            )
        )
        body = {"model": "m1", "stream": True, "messages": [{"role": "user", "content": "hi"}]}

        async with make_client(upstream, request_logger) as client:
            response = await client.post("/v1/messages", json=body, headers={"accept-encoding": "gzip"})
        await request_logger.drain()

        assert upstream.requests[0].headers["accept-encoding"] == "identity"
        assert "content-encoding" not in response.headers
        assert response.content == stream_bytes
        [record] = read_records(log_path)
        assert record["response"]["fullText"] == "Hi there"

    async def test_stream_request_with_json_answer(self, request_logger, log_path):
        error = {"type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"}}
        upstream = Upstream(httpx.Response(401, json=error))

        async with make_client(upstream, request_logger) as client:
            response = await client.post("/v1/messages", json={"model": "m1", "stream": True, "messages": []})
        await request_logger.drain()

        assert response.status_code == 401
        [record] = read_records(log_path)
        assert record["error"]["type"] == "authentication_error"

    async def test_connection_error(self, request_logger, log_path):
        upstream = Upstream(error=httpx.ConnectError("connection refused"))

        async with make_client(upstream, request_logger) as client:
            response = await client.post("/v1/messages", json={"model": "m1", "messages": []})

        assert response.status_code == 502
        assert response.json()["error"]["type"] == "proxy_error"
        [record] = read_records(log_path)
        assert record["error"]["message"] == "connection refused"
        assert record["error"]["type"] == "ConnectError"

    async def test_logging_disabled(self, tmp_path):
        upstream = Upstream(httpx.Response(200, json={"id": "msg_1", "content": []}))

        async with make_client(upstream, None) as client:
            response = await client.post("/v1/messages", json={"model": "m1", "messages": []})

        assert response.json() == {"id": "msg_1", "content": []}
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.parametrize("path", ["/v1/messages", "/v1/complete"])
    async def test_raw_body_forwarded(self, request_logger, path):
        upstream = Upstream(httpx.Response(200, text="ok"))

        async with make_client(upstream, request_logger) as client:
            response = await client.post(path, content=b"not json", headers={"content-type": "text/plain"})

        assert response.text == "ok"
        assert upstream.requests[0].content == b"not json"
