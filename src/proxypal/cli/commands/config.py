"""Config command group for proxypal CLI.

Reads the configuration document from disk; works without the daemon.
`config apply` sends changes through the daemon's API (PUT /api/config) so running
processes are reconciled.
"""

from __future__ import annotations

__all__ = ["config"]

import json
from pathlib import Path

import click

from proxypal.cli.api_client import DaemonAPIError, api_request
from proxypal.config import get_config_path
from proxypal.manager.config_store import ConfigStore

from ..styling import style_dim, style_header, style_label, style_success, style_warning


@click.group()
def config() -> None:
    """Configuration management commands."""


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output the full document as JSON")
def show(as_json: bool) -> None:
    """Show the configuration document.

    Missing or unreadable files show defaults.
    """
    path = get_config_path()
    document = ConfigStore(path).load()

    if as_json:
        click.echo(json.dumps(document.to_document(), indent=2))
        return

    click.echo(style_header("Proxy"))
    click.echo(f"  {style_label('Port')} {document.port}")
    click.echo(f"  {style_label('Endpoint')} {document.proxy_endpoint}")
    click.echo(f"  {style_label('Upstream proxy')} {document.proxy_url or style_dim('(none)')}")
    click.echo(f"  {style_label('Auto start')} {document.auto_start}")
    click.echo(f"  {style_label('Request retry')} {document.request_retry}")
    click.echo()

    click.echo(style_header("Credentials"))
    click.echo(f"  {style_label('Claude API keys')} {len(document.claude_api_keys)}")
    click.echo(f"  {style_label('Gemini API keys')} {len(document.gemini_api_keys)}")
    click.echo(f"  {style_label('Codex API keys')} {len(document.codex_api_keys)}")
    click.echo(f"  {style_label('OpenAI-compatible providers')} {len(document.openai_compatible_providers)}")
    click.echo(f"  {style_label('Amp providers')} {len(document.amp_openai_providers)}")
    click.echo()

    click.echo(style_header("Copilot"))
    copilot = document.copilot
    click.echo(f"  {style_label('Enabled')} {copilot.enabled}")
    click.echo(f"  {style_label('Port')} {copilot.port}")
    click.echo(f"  {style_label('Account type')} {copilot.account_type}")
    click.echo()
    click.echo(style_dim(f"File: {path}"))


@config.command("path")
def path() -> None:
    """Show the configuration file path."""
    config_path = get_config_path()
    click.echo(str(config_path))
    if not config_path.exists():
        click.echo(style_dim("(file does not exist yet; defaults are in use)"), err=True)


@config.command("apply")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def apply(file: Path) -> None:
    """Replace the configuration from a JSON FILE via the daemon.

    Affected processes are restarted. If a restart fails the document is
    still saved; retry with: proxypal restart KIND
    """
    try:
        document = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise click.ClickException(f"Could not read {file}: {e}") from e
    if not isinstance(document, dict):
        raise click.ClickException(f"{file} must contain a JSON object")

    try:
        response = api_request("PUT", "/api/config", json_data=document)
    except DaemonAPIError as e:
        if e.code != "PROCESS_RESTART_FAILED":
            raise
        click.echo(style_warning("Configuration saved, but some processes failed to restart:"), err=True)
        for kind, reason in sorted(e.details.get("failed", {}).items()):
            click.echo(f"  {kind}: {reason}", err=True)
        click.echo(style_dim("Retry with: proxypal restart KIND"), err=True)
        raise SystemExit(1) from e

    actions = response.get("actions", []) if isinstance(response, dict) else []
    click.echo(style_success("Configuration saved"))
    for kind, action in actions:
        click.echo(f"  {kind}: {action}")
