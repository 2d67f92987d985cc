"""Runtime configuration, read once from the environment."""

import os

# Where we forward to
UPSTREAM_URL = os.environ.get("UPSTREAM_URL", "https://api.anthropic.com")
MESSAGES_PATH = "/v1/messages"

# Protocol headers the upstream requires for OAuth bearer tokens
ANTHROPIC_VERSION = os.environ.get("ANTHROPIC_VERSION", "2023-06-01")
ANTHROPIC_BETA = os.environ.get("ANTHROPIC_BETA", "oauth-2025-04-20")

# Credential storage
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
TOKEN_KEY = os.getenv("TOKEN_KEY", "claude_token")
TOKEN_EXPIRY_SKEW_SECONDS = int(os.getenv("TOKEN_EXPIRY_SKEW_SECONDS", "0"))

# Long read timeout for LLM responses
UPSTREAM_TIMEOUT = float(os.environ.get("UPSTREAM_TIMEOUT", "300"))
UPSTREAM_CONNECT_TIMEOUT = float(os.environ.get("UPSTREAM_CONNECT_TIMEOUT", "10"))

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8080"))
