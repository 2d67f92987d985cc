"""HTTP proxy logic for forwarding requests to Anthropic and relaying the reply."""

import logging
from collections.abc import AsyncIterator
from enum import Enum

import httpx
from fastapi import Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from . import config
from .credentials import Credential
from .errors import cors_headers

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Persistent client for connection pooling
_client: httpx.AsyncClient | None = None


async def get_client() -> httpx.AsyncClient:
    """Get or create the HTTP client."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            base_url=config.UPSTREAM_URL,
            timeout=httpx.Timeout(
                config.UPSTREAM_TIMEOUT,
                connect=config.UPSTREAM_CONNECT_TIMEOUT,
            ),
        )
    return _client


async def close():
    """Close the HTTP client."""
    global _client
    if _client:
        await _client.aclose()
        _client = None


def build_upstream_headers(credential: Credential) -> dict[str, str]:
    """Headers for the outbound call. Nothing from the client is forwarded."""
    return {
        "Authorization": f"Bearer {credential.access_token}",
        "Content-Type": "application/json",
        "anthropic-version": config.ANTHROPIC_VERSION,
        "anthropic-beta": config.ANTHROPIC_BETA,
    }


async def open_upstream_stream(content: bytes, credential: Credential) -> httpx.Response:
    """POST to the messages endpoint and return once headers have arrived.

    The body is left unread so the caller can decide, from the response's
    content type, whether to buffer it or stream it. The caller owns the
    response and must close it.
    """
    client = await get_client()
    request = client.build_request(
        "POST",
        config.MESSAGES_PATH,
        headers=build_upstream_headers(credential),
        content=content,
    )
    return await client.send(request, stream=True)


def is_event_stream(response: httpx.Response) -> bool:
    return "text/event-stream" in response.headers.get("content-type", "")


async def relay_buffered(upstream: httpx.Response) -> Response:
    """Read the whole upstream body and re-emit it with the same status.

    Serves both successful JSON replies and upstream error passthrough.
    Bytes are copied as-is, without decoding.
    """
    try:
        await upstream.aread()
    finally:
        await upstream.aclose()

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers=cors_headers(),
        media_type="application/json",
    )


class RelayState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class StreamRelay:
    """Pass an upstream SSE body through to the client, one chunk at a time.

    Each chunk is yielded exactly as it came off the wire, before the next is
    pulled. Reaching the end of the upstream body closes the relay; a failure
    while pulling marks it errored and re-raises, so the server aborts the
    response instead of ending it cleanly. The upstream response is closed in
    every case, including when the client disconnects mid-stream.
    """

    def __init__(self, upstream: httpx.Response):
        self.upstream = upstream
        self.state = RelayState.OPEN
        self.chunk_count = 0
        self.byte_count = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self.state is not RelayState.OPEN:
            return

        logger.info("Streaming relay started")
        try:
            async for chunk in self.upstream.aiter_bytes():
                self.chunk_count += 1
                self.byte_count += len(chunk)
                yield chunk
        except Exception as e:
            self.state = RelayState.ERRORED
            logger.error(f"Streaming relay failed after {self.chunk_count} chunks: {e}")
            raise
        else:
            self.state = RelayState.CLOSED
            logger.info(
                f"Streaming relay finished: {self.chunk_count} chunks, {self.byte_count}B"
            )
        finally:
            if self.state is RelayState.OPEN:
                # Cancelled or abandoned by the consumer
                self.state = RelayState.CLOSED
                logger.info(f"Client went away after {self.chunk_count} chunks, stopping relay")
            await self.upstream.aclose()

    def response(self) -> StreamingResponse:
        """The client-facing streaming response, status mirrored from upstream."""
        return StreamingResponse(
            self,
            status_code=self.upstream.status_code,
            headers={**STREAM_HEADERS, **cors_headers()},
            background=BackgroundTask(self.upstream.aclose),
        )
