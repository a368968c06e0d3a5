"""Main CLI entry point for proxypal.

Defines the CLI group and registers all subcommands.

Commands:
    config         - Configuration (show, path, apply)
    detect-proxy   - Show the detected system proxy
    restart        - Restart a supervised process
    serve          - Run the daemon in the foreground
    start          - Start a supervised process
    status         - Show process and provider status
    stop           - Stop a supervised process
    test-provider  - Test an OpenAI-compatible provider

Subcommand help:
    proxypal COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli", "main"]

import sys

import click

from proxypal import __version__

from .commands.config import config
from .commands.process import restart, start, stop
from .commands.providers import detect_proxy, test_provider
from .commands.serve import serve
from .commands.status import status


class ReorderedGroup(click.Group):
    """Custom group that shows commands before custom help text."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Add extra help after commands section."""
        formatter.write(
            """
Quick Start:
  proxypal serve                   Run the daemon (auto-starts the proxy)
  proxypal status                  Check both processes
  proxypal restart proxy           Re-launch the proxy with current config

Changing Configuration:
  proxypal config show --json > proxypal.json
  # edit proxypal.json, then:
  proxypal config apply proxypal.json

Process Kinds (for start/stop/restart):
  proxy     The API proxy (default port 8317)
  copilot   The GitHub Copilot bridge (default port 4141)
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """proxypal: Local control plane for AI API proxies."""
    if version:
        click.echo(f"proxypal {__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(config)
cli.add_command(detect_proxy)
cli.add_command(restart)
cli.add_command(serve)
cli.add_command(start)
cli.add_command(status)
cli.add_command(stop)
cli.add_command(test_provider)


def main() -> None:
    """CLI entry point."""
    cli()
