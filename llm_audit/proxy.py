"""Proxy server that forwards LLM API requests and audits generation calls."""

import contextlib
import json
import logging
from collections.abc import AsyncIterator

import httpx
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from .interceptor import RequestLogger

# Default Anthropic API base URL
DEFAULT_TARGET_URL = "https://api.anthropic.com"

SESSION_HEADER = "x-session-id"
PRESET_HEADER = "x-preset"

# Not forwarded upstream: hop-by-hop or recomputed. Accept-encoding is
# replaced by identity so both stream copies see plain event-stream text.
SKIPPED_HEADERS = {
    "host",
    "connection",
    "keep-alive",
    "transfer-encoding",
    "content-length",
    "accept-encoding",
}

# Not relayed back: hop-by-hop, or no longer true once the body is decoded
SKIPPED_RESPONSE_HEADERS = {
    "connection",
    "keep-alive",
    "transfer-encoding",
    "content-length",
    "content-encoding",
}


def relay_headers(response: httpx.Response) -> dict[str, str]:
    """Upstream response headers that are passed on to the client."""
    return {
        key: value
        for key, value in response.headers.items()
        if key.lower() not in SKIPPED_RESPONSE_HEADERS
    }


class LLMProxy:
    """Proxy server that forwards requests and hands them to the request logger."""

    def __init__(
        self,
        target_url: str,
        request_logger: RequestLogger | None,
        client: httpx.AsyncClient | None = None,
    ):
        self.target_url = target_url.rstrip("/")
        self.request_logger = request_logger
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(300.0))

    async def close(self):
        """Wait for pending log writes, then close the HTTP client."""
        if self.request_logger:
            await self.request_logger.drain()
        await self.client.aclose()

    async def proxy_request(self, request: Request) -> Response:
        """Proxy any request to the target API."""
        path = request.url.path
        query_string = request.url.query
        upstream_url = f"{self.target_url}{path}"
        if query_string:
            upstream_url = f"{upstream_url}?{query_string}"

        body = await request.body()
        request_data = None
        if body:
            try:
                request_data = json.loads(body)
            except (json.JSONDecodeError, UnicodeDecodeError):
                # Not JSON, forward as raw body
                pass

        headers = {
            key: value
            for key, value in request.headers.items()
            if key.lower() not in SKIPPED_HEADERS
        }
        headers["accept-encoding"] = "identity"

        capture = None
        if self.request_logger and request.method == "POST" and isinstance(request_data, dict):
            capture = self.request_logger.capture(
                path,
                request_data,
                session_id=request.headers.get(SESSION_HEADER),
                preset=request.headers.get(PRESET_HEADER),
            )

        is_stream = request_data.get("stream", False) if isinstance(request_data, dict) else False

        upstream_request = self.client.build_request(
            request.method, upstream_url, headers=headers, content=body
        )
        try:
            response = await self.client.send(upstream_request, stream=True)
        except httpx.RequestError as e:
            logging.error(f"Upstream request failed: {e}")
            if capture and self.request_logger:
                await self.request_logger.on_error(capture, e)
            return JSONResponse(
                {"error": {"message": str(e), "type": "proxy_error"}},
                status_code=502,
            )

        content_type = response.headers.get("content-type", "")
        if is_stream and content_type.startswith("text/event-stream"):
            return await self._handle_streaming_response(response, capture)
        return await self._handle_normal_response(response, capture)

    async def _handle_normal_response(self, response: httpx.Response, capture) -> Response:
        """Relay a complete upstream response."""
        try:
            await response.aread()
        except httpx.RequestError as e:
            logging.error(f"Upstream response failed: {e}")
            if capture and self.request_logger:
                await self.request_logger.on_error(capture, e)
            return JSONResponse(
                {"error": {"message": str(e), "type": "proxy_error"}},
                status_code=502,
            )
        finally:
            await response.aclose()

        content = response.content
        if capture and self.request_logger:
            content = await self.request_logger.on_send(capture, content)
        return Response(
            content=content,
            status_code=response.status_code,
            headers=relay_headers(response),
        )

    async def _handle_streaming_response(self, response: httpx.Response, capture) -> Response:
        """Relay an upstream event stream chunk by chunk."""
        stream: AsyncIterator[bytes] = response.aiter_bytes()
        if capture and self.request_logger:
            stream = await self.request_logger.on_send(capture, stream)

        async def generate() -> AsyncIterator[bytes]:
            try:
                async with contextlib.aclosing(stream):
                    async for chunk in stream:
                        yield chunk
            except httpx.RequestError as e:
                logging.error(f"Upstream stream failed: {e}")
                error_response = json.dumps({"error": {"message": str(e), "type": "proxy_error"}})
                yield f"data: {error_response}\n".encode("utf-8")

        headers = relay_headers(response)
        headers.setdefault("cache-control", "no-cache")
        return StreamingResponse(
            generate(),
            status_code=response.status_code,
            headers=headers,
            background=BackgroundTask(response.aclose),
        )


def create_app(
    target_url: str,
    request_logger: RequestLogger | None,
    client: httpx.AsyncClient | None = None,
) -> Starlette:
    """Create the Starlette application."""
    proxy = LLMProxy(target_url, request_logger, client)

    async def proxy_all(request: Request) -> Response:
        return await proxy.proxy_request(request)

    async def health(request: Request) -> Response:
        return JSONResponse({"status": "ok"})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        yield
        await proxy.close()

    app = Starlette(
        routes=[
            Route("/health", health, methods=["GET"]),
            # Catch-all route for all other paths
            Route("/{path:path}", proxy_all, methods=["GET", "POST", "PUT", "DELETE", "PATCH"]),
        ],
        lifespan=lifespan,
    )
    app.state.proxy = proxy

    return app
