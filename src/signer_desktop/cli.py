"""Signer desktop CLI.

Talks to a running signer desktop agent over its websocket.

Usage:
    signer-desktop status                      # Agent status and version
    signer-desktop certs                       # List certificates on the token
    signer-desktop policies                    # List signature policies
    signer-desktop files                       # Files available to sign
    signer-desktop sign CONTENT --alias A      # Sign raw content
    signer-desktop sign-file NAME --alias A    # Sign a file from `files`
    signer-desktop sign-file-defaults          # Sign a file using agent defaults
    signer-desktop validate CONTENT SIGNATURE  # Validate a base64 signature
    signer-desktop validate-file               # Validate a file on the agent side
    signer-desktop logout                      # Log out of the token
    signer-desktop shutdown                    # Stop the agent

    signer-desktop --uri ws://localhost:9091/ --format json status
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import click

from .client import SignerDesktopClient
from .config import ClientConfig
from .errors import CallError, SignerDesktopError

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


def _format_value(value: Any) -> str:
    if isinstance(value, dict | list):
        return json.dumps(value)
    return str(value)


def _print_result(result: Any, output_format: str) -> None:
    """Print a response payload."""
    if result is None:
        return

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(result, indent=2))
        return

    if not isinstance(result, dict):
        click.echo(_format_value(result))
        return

    rows = {k: v for k, v in result.items() if k != "requestId"}
    if not rows:
        click.echo("OK")
        return

    width = max(len(k) for k in rows)
    for key, value in rows.items():
        if isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
            click.echo(f"{key}:")
            for item in value:
                click.echo("  - " + ", ".join(f"{k}={_format_value(v)}" for k, v in item.items()))
        else:
            click.echo(f"{key:<{width}}  {_format_value(value)}")


async def _with_client(
    config: ClientConfig,
    operation: Callable[[SignerDesktopClient], Awaitable[Any]],
) -> Any:
    errors: list[SignerDesktopError] = []
    client = SignerDesktopClient(config)
    connected = await client.connect(on_error=errors.append)
    if not connected:
        reason = errors[0] if errors else f"could not connect to {config.uri}"
        raise click.ClickException(str(reason))
    try:
        return await operation(client)
    finally:
        await client.close()


def _run(ctx: click.Context, operation: Callable[[SignerDesktopClient], Awaitable[Any]]) -> None:
    config: ClientConfig = ctx.obj["config"]
    output_format: str = ctx.obj["format"]

    try:
        result = asyncio.run(_with_client(config, operation))
    except CallError as e:
        click.echo(f"Agent error: {_format_value(e.error)}", err=True)
        sys.exit(1)
    except SignerDesktopError as e:
        raise click.ClickException(str(e)) from e

    _print_result(result, output_format)


@click.group()
@click.option("--uri", default=None, help="Agent websocket URI (default: ws://localhost:9091/)")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for each response")
@click.option("--debug", is_flag=True, help="Log connection lifecycle and traffic")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_context
def main(
    ctx: click.Context,
    uri: str | None,
    timeout: float | None,
    debug: bool,
    output_format: str,
) -> None:
    """Signer desktop client - drive the local signing agent."""
    try:
        config = ClientConfig.from_env()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    if uri:
        config.uri = uri
    if timeout is not None:
        config.timeout = timeout
    if debug:
        config.debug = True

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["format"] = output_format


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show agent status."""
    _run(ctx, lambda client: client.status())


@main.command()
@click.pass_context
def certs(ctx: click.Context) -> None:
    """List certificates available on the token."""
    _run(ctx, lambda client: client.list_certs())


@main.command()
@click.pass_context
def policies(ctx: click.Context) -> None:
    """List signature policies."""
    _run(ctx, lambda client: client.list_policies())


@main.command()
@click.pass_context
def files(ctx: click.Context) -> None:
    """List files available to sign."""
    _run(ctx, lambda client: client.get_files())


@main.command()
@click.argument("content")
@click.option("--alias", required=True, help="Certificate alias")
@click.option("--provider", default=None, help="Key provider (token, smart card, ...)")
@click.option("--policy", "signature_policy", default=None, help="Signature policy")
@click.pass_context
def sign(
    ctx: click.Context,
    content: str,
    alias: str,
    provider: str | None,
    signature_policy: str | None,
) -> None:
    """Sign raw CONTENT."""
    _run(ctx, lambda client: client.signer(alias, provider, content, signature_policy))


@main.command("sign-file")
@click.argument("file_name")
@click.option("--alias", required=True, help="Certificate alias")
@click.option("--provider", default=None, help="Key provider (token, smart card, ...)")
@click.option("--policy", "signature_policy", default=None, help="Signature policy")
@click.pass_context
def sign_file(
    ctx: click.Context,
    file_name: str,
    alias: str,
    provider: str | None,
    signature_policy: str | None,
) -> None:
    """Sign FILE_NAME as listed by `files`."""
    _run(ctx, lambda client: client.signer_file(alias, provider, file_name, signature_policy))


@main.command("sign-file-defaults")
@click.pass_context
def sign_file_defaults(ctx: click.Context) -> None:
    """Sign a file using the agent's default certificate and policy."""
    _run(ctx, lambda client: client.signer_file_using_defaults())


@main.command()
@click.argument("content")
@click.argument("signature")
@click.pass_context
def validate(ctx: click.Context, content: str, signature: str) -> None:
    """Validate base64 SIGNATURE against base64 CONTENT."""
    _run(ctx, lambda client: client.validate(content, signature))


@main.command("validate-file")
@click.pass_context
def validate_file(ctx: click.Context) -> None:
    """Validate a signed file chosen on the agent side."""
    _run(ctx, lambda client: client.validate_file())


@main.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Log out of the PKCS#11 token."""
    _run(ctx, lambda client: client.logout_pkcs11())
    click.echo("Logout sent")


@main.command()
@click.pass_context
def shutdown(ctx: click.Context) -> None:
    """Stop the agent process."""
    _run(ctx, lambda client: client.shutdown())
    click.echo("Shutdown sent")


if __name__ == "__main__":
    main()
