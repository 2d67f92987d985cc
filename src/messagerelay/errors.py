"""Error codes and the structured error response every failure path uses."""

from fastapi.responses import JSONResponse

API_ONLY_POST_MESSAGES = "API_ONLY_POST_MESSAGES"
AUTH_NO_TOKEN_CONFIGURED = "AUTH_NO_TOKEN_CONFIGURED"
AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
API_PROXY_ERROR = "API_PROXY_ERROR"

# Used when the caller doesn't supply a message of its own
DEFAULT_MESSAGES = {
    API_ONLY_POST_MESSAGES: "Only POST /v1/messages is supported",
    AUTH_NO_TOKEN_CONFIGURED: "No token configured",
    AUTH_TOKEN_EXPIRED: "Token expired",
    API_PROXY_ERROR: "Proxy error",
}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def cors_headers() -> dict[str, str]:
    """Fresh copy of the CORS headers, safe to extend per response."""
    return dict(CORS_HEADERS)


def create_error_response(
    code: str,
    message: str | None = None,
    status_code: int = 500,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the structured error response.

    Body shape is ``{"error": {"code": ..., "message": ...}}``. When no
    message is given, the default for the code is used.
    """
    return JSONResponse(
        content={
            "error": {
                "code": code,
                "message": message or DEFAULT_MESSAGES.get(code, code),
            }
        },
        status_code=status_code,
        headers=headers,
    )
