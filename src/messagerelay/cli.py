"""Command-line entry points: run the server, inspect the stored token."""

import asyncio

import pendulum
import typer
import uvicorn

from . import config
from .credentials import (
    Credential,
    CredentialFormatError,
    RedisTokenStore,
    is_token_expired,
)

app = typer.Typer(help="Message Relay - Messages API forwarding with a stored OAuth token.")


@app.command()
def serve(
    host: str = typer.Option(config.HOST, "--host", help="Interface to bind"),
    port: int = typer.Option(config.PORT, "--port", "-p", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the relay server."""
    uvicorn.run(
        "messagerelay.app:app",
        host=host,
        port=port,
        reload=reload,
    )


async def _read_token(url: str, key: str) -> str | None:
    store = RedisTokenStore(url)
    try:
        return await store.get(key)
    finally:
        await store.close()


@app.command("token-status")
def token_status(
    redis_url: str = typer.Option(config.REDIS_URL, "--redis-url", help="Redis holding the token"),
    key: str = typer.Option(config.TOKEN_KEY, "--key", "-k", help="Key the token is stored under"),
):
    """Report whether a usable token is stored, and when it expires."""
    value = asyncio.run(_read_token(redis_url, key))
    if not value:
        typer.echo(f"No token configured under '{key}'. Visit /get-token to set one up.", err=True)
        raise typer.Exit(code=1)

    try:
        credential = Credential.from_json(value)
    except CredentialFormatError as e:
        typer.echo(f"Stored token is unreadable: {e}", err=True)
        raise typer.Exit(code=2)

    if credential.expires_at is None:
        typer.echo("Token configured, no expiry recorded.")
        return

    now = pendulum.now("UTC")
    if is_token_expired(credential, now=now):
        typer.echo(
            f"Token expired {credential.expires_at.diff_for_humans()} "
            f"({credential.expires_at.to_iso8601_string()}). Visit /get-token to refresh it.",
            err=True,
        )
        raise typer.Exit(code=1)

    typer.echo(
        f"Token valid, expires {credential.expires_at.diff_for_humans()} "
        f"({credential.expires_at.to_iso8601_string()})."
    )


def main():
    app()
