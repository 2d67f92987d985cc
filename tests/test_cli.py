"""Tests for the token-status command."""

import pendulum
import pytest
from typer.testing import CliRunner

from conftest import stored_token
from messagerelay import cli

runner = CliRunner()


@pytest.fixture
def stored(monkeypatch):
    """Replace the Redis read with a canned value."""
    holder = {"value": None}

    async def fake_read(url: str, key: str) -> str | None:
        return holder["value"]

    monkeypatch.setattr(cli, "_read_token", fake_read)
    return holder


def test_no_token(stored):
    result = runner.invoke(cli.app, ["token-status"])

    assert result.exit_code == 1
    assert "No token configured" in result.output


def test_valid_token(stored):
    stored["value"] = stored_token()

    result = runner.invoke(cli.app, ["token-status"])

    assert result.exit_code == 0
    assert "Token valid" in result.output


def test_expired_token(stored):
    stored["value"] = stored_token(expires_at=pendulum.now("UTC").subtract(days=1).int_timestamp)

    result = runner.invoke(cli.app, ["token-status"])

    assert result.exit_code == 1
    assert "Token expired" in result.output


def test_unreadable_token(stored):
    stored["value"] = "not json"

    result = runner.invoke(cli.app, ["token-status"])

    assert result.exit_code == 2
    assert "unreadable" in result.output
