"""Status command for proxypal CLI.

Shows process and provider status. Requires the running daemon (uses API).
"""

from __future__ import annotations

__all__ = ["status"]

import json
from typing import Any

import click

from proxypal.cli.api_client import api_request

from ..styling import style_condition, style_dim, style_header


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--refresh", is_flag=True, help="Poll the running processes before reporting")
def status(as_json: bool, refresh: bool) -> None:
    """Show process and provider status.

    Examples:
        proxypal status
        proxypal status --refresh --json
    """
    if refresh:
        response = api_request("POST", "/api/status/refresh")
    else:
        response = api_request("GET", "/api/status")
    data = response if isinstance(response, dict) else {}

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return
    _print_status_formatted(data)


def _print_process(label: str, process: dict[str, Any]) -> None:
    condition = str(process.get("condition", "not_started"))
    click.echo(f"  {label:10} {style_condition(condition)}")
    click.echo(f"  {'':10} endpoint: {process.get('endpoint', '-')}")
    if process.get("pid"):
        click.echo(f"  {'':10} pid: {process['pid']}")
    if process.get("reason") and condition != "running":
        click.echo(f"  {'':10} reason: {process['reason']}")
    if label == "copilot" and condition == "running":
        click.echo(f"  {'':10} authenticated: {'yes' if process.get('authenticated') else 'no'}")


def _print_status_formatted(data: dict[str, Any]) -> None:
    click.echo(style_header("Processes"))
    _print_process("proxy", data.get("proxy", {}))
    _print_process("copilot", data.get("copilot", {}))
    click.echo()

    click.echo(style_header("Providers"))
    providers: dict[str, Any] = data.get("providers", {})
    if not providers:
        click.echo(style_dim("  No providers tracked."))
        return
    for name in sorted(providers):
        entry = providers[name]
        accounts = entry.get("accounts", 0)
        line = f"  {name:12} {accounts} account{'s' if accounts != 1 else ''}"
        if entry.get("last_error"):
            line += click.style(f"  ({entry['last_error']})", fg="red")
        click.echo(line)
