"""Stored OAuth credential - lookup, parsing, expiry.

The credential is written to Redis by the /get-token flow (not part of this
service) as a JSON string under a fixed key. We only ever read it.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import pendulum
import redis.asyncio as aioredis

from . import config
from .errors import AUTH_NO_TOKEN_CONFIGURED, AUTH_TOKEN_EXPIRED

logger = logging.getLogger(__name__)

# Anything above this is an epoch in milliseconds, not seconds
_MS_EPOCH_THRESHOLD = 100_000_000_000

# Fields the token flow may use for the issue time, in order of preference
_ISSUED_AT_FIELDS = ("obtained_at", "created_at", "issued_at")


class TokenStore(Protocol):
    """Read-only key-value lookup for serialized credentials."""

    async def get(self, key: str) -> str | None:
        """Return the stored value for key, or None if there isn't one."""
        ...


class CredentialError(Exception):
    """A credential problem the client can fix. Maps to a 401."""

    code: str = AUTH_NO_TOKEN_CONFIGURED
    status_code: int = 401
    default_message: str = ""

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NoTokenConfigured(CredentialError):
    code = AUTH_NO_TOKEN_CONFIGURED
    default_message = "Visit /get-token to set up authentication"


class TokenExpired(CredentialError):
    code = AUTH_TOKEN_EXPIRED
    default_message = "Visit /get-token to refresh your token"


class CredentialFormatError(ValueError):
    """The stored value isn't a credential we can read."""


def parse_timestamp(value: Any) -> pendulum.DateTime | None:
    """Turn an epoch (seconds or ms) or ISO-8601 string into a UTC DateTime."""
    if value is None or value == "":
        return None

    if isinstance(value, bool):
        raise CredentialFormatError(f"Invalid timestamp: {value!r}")

    if isinstance(value, str):
        stripped = value.strip()
        try:
            value = float(stripped)
        except ValueError:
            try:
                parsed = pendulum.parse(stripped)
            except ValueError as e:
                raise CredentialFormatError(f"Invalid timestamp: {value!r}") from e
            if not isinstance(parsed, pendulum.DateTime):
                raise CredentialFormatError(f"Invalid timestamp: {value!r}")
            return parsed.in_timezone("UTC")

    if isinstance(value, (int, float)):
        if value > _MS_EPOCH_THRESHOLD:
            value = value / 1000
        return pendulum.from_timestamp(value)

    raise CredentialFormatError(f"Invalid timestamp: {value!r}")


@dataclass(frozen=True)
class Credential:
    """An OAuth access token and when it stops being valid."""

    access_token: str
    expires_at: pendulum.DateTime | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Credential":
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise CredentialFormatError("Stored credential has no access_token")

        expires_at = parse_timestamp(data.get("expires_at"))

        # Fall back to issue time + lifetime
        if expires_at is None and data.get("expires_in") is not None:
            issued_at = None
            for name in _ISSUED_AT_FIELDS:
                issued_at = parse_timestamp(data.get(name))
                if issued_at is not None:
                    break
            if issued_at is not None:
                try:
                    lifetime = float(data["expires_in"])
                except (TypeError, ValueError) as e:
                    raise CredentialFormatError(
                        f"Invalid expires_in: {data['expires_in']!r}"
                    ) from e
                expires_at = issued_at.add(seconds=lifetime)

        return cls(
            access_token=access_token,
            expires_at=expires_at,
        )

    @classmethod
    def from_json(cls, value: str) -> "Credential":
        try:
            data = json.loads(value)
        except json.JSONDecodeError as e:
            raise CredentialFormatError(f"Stored credential is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CredentialFormatError("Stored credential is not a JSON object")
        return cls.from_dict(data)


def is_token_expired(
    credential: Credential,
    now: pendulum.DateTime | None = None,
    skew_seconds: int | None = None,
) -> bool:
    """True once now has reached the expiry time.

    Expiry exactly equal to now counts as expired. A credential with no
    expiry information never expires here; the upstream will tell us.
    """
    if credential.expires_at is None:
        return False
    if now is None:
        now = pendulum.now("UTC")
    if skew_seconds is None:
        skew_seconds = config.TOKEN_EXPIRY_SKEW_SECONDS
    return now >= credential.expires_at.subtract(seconds=skew_seconds)


async def load_credential(
    store: TokenStore,
    key: str | None = None,
    now: pendulum.DateTime | None = None,
) -> Credential:
    """Fetch and validate the stored credential.

    Raises:
        NoTokenConfigured: nothing stored under the key
        TokenExpired: stored credential is past its expiry
        CredentialFormatError: stored value can't be parsed
    """
    key = key or config.TOKEN_KEY
    value = await store.get(key)
    if not value:
        logger.warning(f"No credential stored under {key}")
        raise NoTokenConfigured()

    credential = Credential.from_json(value)

    if is_token_expired(credential, now=now):
        logger.warning(f"Stored credential expired at {credential.expires_at}")
        raise TokenExpired()

    return credential


class RedisTokenStore:
    """TokenStore backed by Redis."""

    def __init__(self, url: str | None = None):
        self.url = url or config.REDIS_URL
        self._redis: aioredis.Redis | None = None

    async def get_redis(self) -> aioredis.Redis:
        """Get or create async Redis connection."""
        if self._redis is None:
            self._redis = await aioredis.from_url(self.url, decode_responses=True)
        return self._redis

    async def get(self, key: str) -> str | None:
        r = await self.get_redis()
        return await r.get(key)

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


_store: RedisTokenStore | None = None


def get_token_store() -> TokenStore:
    """Default token store. FastAPI dependency; override it in tests."""
    global _store
    if _store is None:
        _store = RedisTokenStore()
    return _store


async def close_token_store():
    """Close the default token store's Redis connection."""
    global _store
    if _store is not None:
        await _store.close()
        _store = None
