"""Message Relay - FastAPI application.

Forwards POST /v1/messages to Anthropic using the OAuth token kept in Redis,
and relays the reply back: buffered JSON, or a live SSE stream.
"""

import json
import logging
import time
from contextlib import asynccontextmanager

import logfire
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config, proxy
from .credentials import (
    CredentialError,
    TokenStore,
    close_token_store,
    get_token_store,
    load_credential,
)
from .errors import (
    API_ONLY_POST_MESSAGES,
    API_PROXY_ERROR,
    cors_headers,
    create_error_response,
)
from .proxy import StreamRelay

# Suppress harmless OTel context warnings before they're configured
logging.getLogger("opentelemetry.context").setLevel(logging.CRITICAL)

logfire.configure(send_to_logfire="if-token-present", scrubbing=False)
logfire.instrument_httpx()
logging.basicConfig(level=logging.INFO, handlers=[logfire.LogfireLoggingHandler()])

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logfire.info("Message Relay starting, upstream={upstream}", upstream=config.UPSTREAM_URL)
    yield
    logfire.info("Message Relay shutting down...")
    await proxy.close()
    await close_token_store()


app = FastAPI(
    title="Message Relay",
    description="Forwards Messages API calls with a stored OAuth token.",
    lifespan=lifespan,
)

logfire.instrument_fastapi(app)


@app.exception_handler(StarletteHTTPException)
async def route_mismatch(request: Request, exc: StarletteHTTPException):
    """Unrouted paths and methods the routes don't list get the same 404."""
    if exc.status_code in (404, 405):
        return create_error_response(API_ONLY_POST_MESSAGES, None, 404, cors_headers())
    return await http_exception_handler(request, exc)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "messagerelay"}


@app.options(config.MESSAGES_PATH)
async def preflight():
    """CORS preflight for the messages endpoint."""
    return Response(status_code=204, headers=cors_headers())


@app.post(config.MESSAGES_PATH)
async def handle_messages(request: Request, store: TokenStore = Depends(get_token_store)):
    """Forward one Messages API call upstream and relay the reply."""
    try:
        try:
            credential = await load_credential(store)
        except CredentialError as e:
            return create_error_response(e.code, e.message, e.status_code, cors_headers())

        request_body = json.loads(await request.body())
        wants_stream = isinstance(request_body, dict) and request_body.get("stream") is True
        content = json.dumps(request_body).encode()

        logfire.info(
            "Messages request: {mode}, {size}B",
            mode="stream" if wants_stream else "non-stream",
            size=len(content),
        )

        start = time.monotonic()
        upstream = await proxy.open_upstream_stream(content, credential)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if not upstream.is_success:
            logger.error(f"Upstream request failed: {upstream.status_code} {upstream.reason_phrase}")
            return await proxy.relay_buffered(upstream)

        # Trust what upstream actually sent, not what the client asked for
        if proxy.is_event_stream(upstream):
            if not wants_stream:
                logger.warning("Upstream streamed a reply to a non-stream request")
            return StreamRelay(upstream).response()

        if wants_stream:
            logger.warning("Upstream sent a non-stream reply to a stream request")
        response = await proxy.relay_buffered(upstream)
        logger.info(
            f"Upstream response: {upstream.status_code}, took {elapsed_ms}ms, size: {len(response.body)}B"
        )
        return response

    except Exception as e:
        logger.exception(f"API proxy error: {e} | URL: {request.url}")
        return create_error_response(
            API_PROXY_ERROR,
            f"API proxy request failed: {e}",
            502,
            cors_headers(),
        )


@app.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"],
)
async def not_found(path: str):
    """Everything that isn't POST /v1/messages."""
    return create_error_response(API_ONLY_POST_MESSAGES, None, 404, cors_headers())
