"""Process control commands: start, stop, restart.

KIND is "proxy" (the API proxy) or "copilot" (the Copilot bridge).
Requires the running daemon.
"""

from __future__ import annotations

__all__ = ["restart", "start", "stop"]

from typing import Any

import click

from proxypal.cli.api_client import api_request

from ..styling import style_success

KIND_CHOICE = click.Choice(["proxy", "copilot"])


def _run(action: str, kind: str) -> dict[str, Any]:
    response = api_request("POST", f"/api/processes/{kind}/{action}")
    return response if isinstance(response, dict) else {}


@click.command()
@click.argument("kind", type=KIND_CHOICE)
def start(kind: str) -> None:
    """Start a supervised process."""
    result = _run("start", kind)
    click.echo(style_success(f"{kind} running at {result.get('endpoint')} (pid {result.get('pid')})"))


@click.command()
@click.argument("kind", type=KIND_CHOICE)
def stop(kind: str) -> None:
    """Stop a supervised process (succeeds if already stopped)."""
    _run("stop", kind)
    click.echo(style_success(f"{kind} stopped"))


@click.command()
@click.argument("kind", type=KIND_CHOICE)
def restart(kind: str) -> None:
    """Restart a supervised process with the current configuration."""
    result = _run("restart", kind)
    click.echo(style_success(f"{kind} restarted at {result.get('endpoint')} (pid {result.get('pid')})"))
