"""CLI entry point for turnprobe."""

import json
from pathlib import Path

import click

from turnprobe import __version__
from turnprobe.config import load_config
from turnprobe.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """turnprobe - Check TURN/STUN servers for reachability and authentication."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


def _credential_provider(config, credentials_url, username, password, secret, identity):
    """Pick a credential source. Command-line flags win over the config file."""
    from turnprobe.credentials import (
        HttpCredentialProvider,
        LocalCredentialProvider,
        StaticCredentialProvider,
    )

    if secret:
        return LocalCredentialProvider(
            secret, identity or config.credential_server.identity
        )
    if username is not None or password is not None:
        return StaticCredentialProvider(username or "", password or "")
    if credentials_url:
        return HttpCredentialProvider(credentials_url)
    if config.credentials_url:
        return HttpCredentialProvider(config.credentials_url)
    return StaticCredentialProvider(config.username or "", config.password or "")


@main.command()
@click.argument("servers", nargs=-1)
@click.option("--credentials-url", "-u", default=None, help="Fetch credentials from this endpoint.")
@click.option("--username", default=None, help="TURN username.")
@click.option("--password", default=None, help="TURN password.")
@click.option("--secret", default=None, help="Derive credentials locally from the shared TURN secret.")
@click.option("--identity", default=None, help="Identity used with --secret.")
@click.option("--timeout", "-t", type=float, default=None, help="Timeout in seconds per server.")
@click.option("--batch-timeout", type=float, default=None, help="Timeout in seconds for the whole run.")
@click.option("--verbose", "-v", is_flag=True, help="Show gathered candidates.")
@click.pass_context
def probe(
    ctx: click.Context,
    servers: tuple[str, ...],
    credentials_url: str | None,
    username: str | None,
    password: str | None,
    secret: str | None,
    identity: str | None,
    timeout: float | None,
    batch_timeout: float | None,
    verbose: bool,
) -> None:
    """Probe SERVERS (e.g. turn:1.2.3.4:3478?transport=tcp).

    Without arguments the servers listed in the config file are probed.
    """
    import asyncio

    from turnprobe.errors import CredentialUnavailable, InvalidServerUri
    from turnprobe.formatting import format_results
    from turnprobe.orchestrator import BatchOrchestrator
    from turnprobe.session import SessionDriver
    from turnprobe.uri import parse_server_list

    config = ctx.obj["config"]
    server_list = list(servers) or config.servers
    if not server_list:
        click.echo("Error: No servers given and none in config file", err=True)
        raise SystemExit(1)

    try:
        parsed = parse_server_list(server_list)
    except InvalidServerUri as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    provider = _credential_provider(
        config, credentials_url, username, password, secret, identity
    )
    orchestrator = BatchOrchestrator(
        credential_provider=provider,
        driver=SessionDriver(candidate_pool_size=config.probe.candidate_pool_size),
        batch_timeout=batch_timeout if batch_timeout is not None else config.probe.batch_timeout,
    )
    per_server = timeout if timeout is not None else config.probe.timeout

    try:
        results = asyncio.run(orchestrator.run_detailed(parsed, per_server))
    except CredentialUnavailable as e:
        click.echo(f"Error fetching credentials: {e}", err=True)
        raise SystemExit(1)

    click.echo(format_results(results, verbose=verbose))


@main.command("serve-credentials")
@click.argument("secret")
@click.option("--host", default=None, help="Address to bind to.")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on.")
@click.option("--identity", default=None, help="Identity embedded in usernames.")
@click.option("--ttl", type=int, default=None, help="Credential validity in seconds.")
@click.pass_context
def serve_credentials(
    ctx: click.Context,
    secret: str,
    host: str | None,
    port: int | None,
    identity: str | None,
    ttl: int | None,
) -> None:
    """Serve time-limited TURN credentials derived from SECRET."""
    import asyncio

    from turnprobe.credential_server import CredentialServer

    server_config = ctx.obj["config"].credential_server
    host = host or server_config.host
    port = port if port is not None else server_config.port

    async def _serve():
        server = CredentialServer(
            secret,
            identity=identity or server_config.identity,
            ttl=ttl if ttl is not None else server_config.ttl,
        )
        try:
            await server.start(host, port)
            click.echo(f"Server running on port {server.get_port()}")
            click.echo("Press Ctrl+C to stop")
            await asyncio.Event().wait()
        finally:
            await server.close()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


@main.command()
@click.argument("secret")
@click.option("--identity", default=None, help="Identity embedded in the username.")
@click.option("--ttl", type=int, default=None, help="Credential validity in seconds.")
@click.pass_context
def credentials(ctx: click.Context, secret: str, identity: str | None, ttl: int | None) -> None:
    """Print a credential pair derived from SECRET as JSON."""
    from turnprobe.crypto import derive_credential

    server_config = ctx.obj["config"].credential_server
    credential = derive_credential(
        secret,
        identity or server_config.identity,
        ttl=ttl if ttl is not None else server_config.ttl,
    )
    click.echo(json.dumps({"username": credential.username, "password": credential.password}))


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"turnprobe version {__version__}")
