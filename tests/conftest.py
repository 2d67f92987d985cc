"""Pytest configuration and fixtures."""

import json
from collections.abc import AsyncIterator

import pendulum
import pytest
from httpx import ASGITransport, AsyncClient

from messagerelay import config, proxy
from messagerelay.app import app
from messagerelay.credentials import get_token_store

MESSAGES_URL = f"{config.UPSTREAM_URL}{config.MESSAGES_PATH}"


class InMemoryTokenStore:
    """TokenStore holding canned values."""

    def __init__(self, values: dict[str, str] | None = None):
        self.values = dict(values or {})
        self.lookups: list[str] = []

    async def get(self, key: str) -> str | None:
        self.lookups.append(key)
        return self.values.get(key)


def stored_token(access_token: str = "sk-ant-oat-test", **fields) -> str:
    """Serialize a credential the way the token flow stores it."""
    data = {
        "access_token": access_token,
        "refresh_token": "sk-ant-ort-test",
        "expires_at": pendulum.now("UTC").add(hours=1).int_timestamp * 1000,
    }
    data.update(fields)
    return json.dumps(data)


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    """Store with a valid, unexpired token."""
    return InMemoryTokenStore({config.TOKEN_KEY: stored_token()})


@pytest.fixture
async def client(token_store: InMemoryTokenStore) -> AsyncIterator[AsyncClient]:
    """Test client talking to the app in-process, with the store swapped out."""
    app.dependency_overrides[get_token_store] = lambda: token_store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    # The pooled upstream client is bound to this test's event loop
    await proxy.close()


@pytest.fixture
def message_request() -> dict:
    return {
        "model": "claude-sonnet-4-20250514",
        "max_tokens": 100,
        "messages": [{"role": "user", "content": "Hello"}],
    }
